"""
Speech synthesis interfaces and the voice catalog
"""
from jokereel.tts.base import ScriptRewriter, SpeechSynthesizer
from jokereel.tts.voices import Voice, default_voice_id, get_voice, get_voice_catalog

__all__ = [
    "ScriptRewriter",
    "SpeechSynthesizer",
    "Voice",
    "default_voice_id",
    "get_voice",
    "get_voice_catalog",
]
