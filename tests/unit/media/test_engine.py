"""
Unit tests for transcoding engine acquisition.

Tests cover:
- Ordered source fallback with uniform attempt outcomes
- Bounded retries with linear backoff
- Lazy, single-flight initialisation of EngineHandle
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from jokereel.media.engine import (
    AllSourcesFailedError,
    EngineHandle,
    EngineSource,
    RetryPolicy,
    build_engine_sources,
    load_first_available,
    try_source,
)
from jokereel.media.exceptions import EngineUnavailableError


def _ok_verify(executable):
    return f"ffmpeg version 6.1 ({executable})"


def _source(name, executable=None, calls=None):
    def locate():
        if calls is not None:
            calls.append(name)
        return executable
    return EngineSource(name, locate)


class TestEngineSources:
    """Test source ordering and attempt outcomes"""

    def test_first_working_source_wins(self):
        calls = []
        sources = [
            _source("configured", None, calls),
            _source("path", "/usr/bin/ffmpeg", calls),
            _source("imageio", "/site-packages/ffmpeg", calls),
        ]

        engine = load_first_available(sources, verify=_ok_verify)

        assert engine.executable == "/usr/bin/ffmpeg"
        assert engine.source == "path"
        assert calls == ["configured", "path"]

    def test_all_sources_failing_reports_every_attempt(self):
        sources = [_source("configured"), _source("path")]

        with pytest.raises(AllSourcesFailedError) as exc_info:
            load_first_available(sources, verify=_ok_verify)

        assert [a.source.name for a in exc_info.value.attempts] == ["configured", "path"]
        assert all(not a.ok for a in exc_info.value.attempts)

    def test_verification_failure_falls_through(self):
        def verify(executable):
            if executable == "/broken/ffmpeg":
                raise RuntimeError("exited with code 1")
            return "ffmpeg version 6.1"

        sources = [_source("configured", "/broken/ffmpeg"), _source("imageio", "/bundled/ffmpeg")]

        engine = load_first_available(sources, verify=verify)

        assert engine.source == "imageio"

    def test_try_source_is_uniform(self):
        ok = try_source(_source("path", "/usr/bin/ffmpeg"), verify=_ok_verify)
        missing = try_source(_source("path"), verify=_ok_verify)

        assert ok.ok and ok.error is None
        assert not missing.ok and isinstance(missing.error, FileNotFoundError)

    def test_build_sources_in_configured_order(self):
        sources = build_engine_sources(["imageio", "bogus", "path"], configured_binary="")

        assert [s.name for s in sources] == ["imageio", "path"]

    def test_imageio_source_uses_bundled_binary(self):
        with patch('jokereel.media.engine.imageio_ffmpeg.get_ffmpeg_exe', return_value="/bundled/ffmpeg"):
            source = build_engine_sources(["imageio"])[0]
            assert source.locate() == "/bundled/ffmpeg"

    def test_imageio_source_without_binary(self):
        with patch('jokereel.media.engine.imageio_ffmpeg.get_ffmpeg_exe', side_effect=RuntimeError("no binary")):
            source = build_engine_sources(["imageio"])[0]
            assert source.locate() is None


class TestRetryPolicy:
    """Test bounded retries"""

    def test_linear_backoff(self):
        policy = RetryPolicy(max_attempts=3, base_delay=1.0)

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_at_least_one_attempt(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        """Three attempts, sleeping 1s then 2s, none after the last"""
        operation = AsyncMock(side_effect=RuntimeError("boom"))
        sleep = AsyncMock()

        with pytest.raises(EngineUnavailableError) as exc_info:
            await RetryPolicy(3, 1.0).run(operation, sleep=sleep)

        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
        assert exc_info.value.attempts == 3
        assert str(exc_info.value.last_error) == "boom"

    @pytest.mark.asyncio
    async def test_succeeds_on_retry(self):
        operation = AsyncMock(side_effect=[RuntimeError("flaky"), "engine"])
        sleep = AsyncMock()

        result = await RetryPolicy(3, 1.0).run(operation, sleep=sleep)

        assert result == "engine"
        assert [c.args[0] for c in sleep.await_args_list] == [1.0]


class TestEngineHandle:
    """Test lazy single-flight initialisation"""

    @pytest.mark.asyncio
    async def test_lazy_initialisation(self):
        calls = []
        handle = EngineHandle(
            sources=[_source("path", "/usr/bin/ffmpeg", calls)],
            retry_policy=RetryPolicy(3, 1.0),
            sleep=AsyncMock(),
            verify=_ok_verify,
        )

        assert not handle.is_initialized
        assert calls == []

        engine = await handle.get()

        assert handle.is_initialized
        assert handle.engine is engine
        assert engine.executable == "/usr/bin/ffmpeg"

    @pytest.mark.asyncio
    async def test_initialises_once(self):
        calls = []
        handle = EngineHandle(
            sources=[_source("path", "/usr/bin/ffmpeg", calls)],
            retry_policy=RetryPolicy(3, 1.0),
            sleep=AsyncMock(),
            verify=_ok_verify,
        )

        first = await handle.get()
        second = await handle.get()

        assert first is second
        assert handle.initialization_count == 1
        assert calls == ["path"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_initialisation(self):
        gate = asyncio.Event()

        async def slow_sleep(delay):
            await gate.wait()

        calls = []
        # First pass fails, so initialisation parks in the backoff sleep
        results = iter([None, "/usr/bin/ffmpeg"])

        def locate():
            calls.append("path")
            return next(results)

        handle = EngineHandle(
            sources=[EngineSource("path", locate)],
            retry_policy=RetryPolicy(3, 1.0),
            sleep=slow_sleep,
            verify=_ok_verify,
        )

        waiters = [asyncio.create_task(handle.get()) for _ in range(5)]
        await asyncio.sleep(0.05)
        gate.set()
        engines = await asyncio.gather(*waiters)

        assert all(e is engines[0] for e in engines)
        assert handle.initialization_count == 1
        assert calls == ["path", "path"]

    @pytest.mark.asyncio
    async def test_exhausted_retries(self):
        """All sources fail on every attempt: three passes, then EngineUnavailableError"""
        calls = []
        sleep = AsyncMock()
        handle = EngineHandle(
            sources=[_source("configured", None, calls), _source("path", None, calls)],
            retry_policy=RetryPolicy(3, 1.0),
            sleep=sleep,
            verify=_ok_verify,
        )

        with pytest.raises(EngineUnavailableError) as exc_info:
            await handle.get()

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, AllSourcesFailedError)
        assert calls == ["configured", "path"] * 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
        assert not handle.is_initialized

    @pytest.mark.asyncio
    async def test_failed_handle_can_retry_later(self):
        available = {"exe": None}
        handle = EngineHandle(
            sources=[EngineSource("path", lambda: available["exe"])],
            retry_policy=RetryPolicy(1, 1.0),
            sleep=AsyncMock(),
            verify=_ok_verify,
        )

        with pytest.raises(EngineUnavailableError):
            await handle.get()

        available["exe"] = "/usr/bin/ffmpeg"
        engine = await handle.get()

        assert engine.executable == "/usr/bin/ffmpeg"
        assert handle.initialization_count == 2

    def test_can_locate_does_not_run_binary(self):
        verify = MagicMock()
        handle = EngineHandle(
            sources=[_source("configured"), _source("path", "/usr/bin/ffmpeg")],
            retry_policy=RetryPolicy(3, 1.0),
            verify=verify,
        )

        assert handle.can_locate()
        verify.assert_not_called()

    def test_cannot_locate(self):
        handle = EngineHandle(sources=[_source("path")], retry_policy=RetryPolicy(3, 1.0))

        assert not handle.can_locate()
