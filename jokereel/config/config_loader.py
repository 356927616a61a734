"""
Configuration loader for JokeReel

Handles loading and merging of YAML configuration files with environment variable overrides.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

ENV_PREFIX = 'JOKEREEL_'


class ConfigLoader:
    """
    Loads and manages configuration from YAML files with cascading priority:
    1. Default configuration (jokereel/config/default.yaml)
    2. User configuration (config/config.yaml at project root)
    3. Environment variable overrides (JOKEREEL_SECTION_KEY format)
    """

    def __init__(self, user_config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Initialize configuration loader

        Args:
            user_config_path: Path to user config file (default: config/config.yaml at project root)
            environ: Environment mapping used for overrides (default: os.environ)
        """
        self.package_dir = Path(__file__).parent
        self.default_config_path = self.package_dir / "default.yaml"

        if user_config_path:
            self.user_config_path = Path(user_config_path)
        else:
            # jokereel/config/ -> project root -> config/
            project_root = self.package_dir.parent.parent
            self.user_config_path = project_root / "config" / "config.yaml"

        self._environ = environ if environ is not None else os.environ
        self.config = self._load_config()

    def _load_yaml(self, file_path: Path) -> Dict[str, Any]:
        """Load YAML file and return as dictionary"""
        if not file_path.exists():
            logger.debug(f"Config file not found: {file_path}")
            return {}

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Error loading config from {file_path}: {e}")
            return {}

        if config is None:
            return {}
        if not isinstance(config, dict):
            logger.warning(f"Ignoring config {file_path}: top level must be a mapping")
            return {}
        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Recursively merge two configuration dictionaries

        Args:
            base: Base configuration
            override: Configuration to merge on top

        Returns:
            Merged configuration
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    @staticmethod
    def _parse_env_value(env_value: str) -> Any:
        """Parse an override as int, float, bool, or keep it as a string."""
        try:
            if '.' in env_value:
                return float(env_value)
            return int(env_value)
        except ValueError:
            pass

        lowered = env_value.lower()
        if lowered in ('true', 'yes'):
            return True
        if lowered in ('false', 'no'):
            return False
        return env_value

    @staticmethod
    def _resolve_key_path(section: Dict[str, Any], parts: List[str]) -> Optional[List[str]]:
        """
        Map underscore-separated parts onto existing keys.

        Keys may contain underscores themselves (``audio_bitrate``), so the
        longest existing key is matched first at every level. Unknown keys
        fall back to one key per remaining part.
        """
        if not parts:
            return []

        for end in range(len(parts), 0, -1):
            candidate = '_'.join(parts[:end])
            rest = parts[end:]
            if candidate not in section:
                continue
            if not rest:
                return [candidate]
            child = section[candidate]
            if not isinstance(child, dict):
                continue
            tail = ConfigLoader._resolve_key_path(child, rest)
            if tail is not None:
                return [candidate] + tail

        if len(parts) == 1:
            return parts
        return None

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply environment variable overrides to configuration

        Environment variables should be in format: JOKEREEL_SECTION_KEY
        Example: JOKEREEL_TRANSCODE_CRF=23

        Args:
            config: Configuration dictionary

        Returns:
            Configuration with environment overrides applied
        """
        result = self._merge_configs({}, config)

        for env_key, env_value in self._environ.items():
            if not env_key.startswith(ENV_PREFIX):
                continue

            parts = env_key[len(ENV_PREFIX):].lower().split('_')
            if len(parts) < 2:
                continue

            key_path = self._resolve_key_path(result, parts)
            if not key_path or len(key_path) < 2:
                logger.debug(f"Ignoring env override with unknown key: {env_key}")
                continue

            current = result
            for part in key_path[:-1]:
                if part not in current:
                    current[part] = {}
                elif not isinstance(current[part], dict):
                    break
                current = current[part]
            else:
                current[key_path[-1]] = self._parse_env_value(env_value)
                logger.debug(f"Applied env override: {env_key} = {env_value}")

        return result

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration with cascading priority

        Returns:
            Merged configuration dictionary
        """
        logger.debug(f"Loading default config from: {self.default_config_path}")
        config = self._load_yaml(self.default_config_path)

        if self.user_config_path.exists():
            logger.info(f"Loading user config from: {self.user_config_path}")
            config = self._merge_configs(config, self._load_yaml(self.user_config_path))
        else:
            logger.debug(f"No user config found at: {self.user_config_path}")

        return self._apply_env_overrides(config)

    def get(self, *keys, default: Any = None) -> Any:
        """
        Get configuration value using dot notation or multiple keys

        Examples:
            config.get('transcode', 'crf')
            config.get('transcode.crf')
            config.get('video', 'fps', default=30)
        """
        if len(keys) == 1 and isinstance(keys[0], str) and '.' in keys[0]:
            keys = keys[0].split('.')

        current = self.config
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return current

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section, or an empty dict if not found"""
        return self.get(section, default={})

    def reload(self) -> None:
        """Reload configuration from files"""
        self.config = self._load_config()
        logger.info("Configuration reloaded")

    def __repr__(self) -> str:
        return f"ConfigLoader(default={self.default_config_path}, user={self.user_config_path})"
