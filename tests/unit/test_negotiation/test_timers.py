"""TimerRegistry 단위 테스트"""

import asyncio

import pytest

from lantalk.negotiation.timers import TimerRegistry


@pytest.fixture
def registry():
    return TimerRegistry(owner="test")


class TestTimerRegistry:
    """TimerRegistry 테스트"""

    @pytest.mark.asyncio
    async def test_timer_fires(self, registry):
        """만료 시 콜백 호출 후 목록에서 제거"""
        fired = []
        registry.arm("gather_timeout", 0.01, lambda: fired.append(True))

        assert registry.is_active("gather_timeout")
        await asyncio.sleep(0.05)

        assert fired == [True]
        assert not registry.is_active("gather_timeout")
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_coroutine_callback(self, registry):
        """코루틴 콜백도 await 된다"""
        fired = asyncio.Event()

        async def _callback():
            fired.set()

        registry.arm("fallback_connect", 0.01, _callback)
        await asyncio.wait_for(fired.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_cancel(self, registry):
        """취소된 타이머는 호출되지 않는다"""
        fired = []
        registry.arm("fallback_connect", 0.02, lambda: fired.append(True))

        assert registry.cancel("fallback_connect") is True
        assert registry.cancel("fallback_connect") is False
        await asyncio.sleep(0.05)

        assert fired == []

    @pytest.mark.asyncio
    async def test_rearm_replaces_timer(self, registry):
        """같은 이름으로 다시 설정하면 이전 타이머는 취소"""
        fired = []
        registry.arm("warning_dismiss", 0.02, lambda: fired.append("first"))
        registry.arm("warning_dismiss", 0.03, lambda: fired.append("second"))

        assert len(registry) == 1
        await asyncio.sleep(0.08)

        assert fired == ["second"]

    @pytest.mark.asyncio
    async def test_cancel_all(self, registry):
        """모든 타이머 취소"""
        registry.arm("a", 1.0, lambda: None)
        registry.arm("b", 1.0, lambda: None)

        assert sorted(registry.names()) == ["a", "b"]
        assert registry.cancel_all() == 2
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self, registry):
        """콜백 예외는 로그만 남기고 다른 타이머에 영향 없음"""
        fired = []

        def _broken():
            raise RuntimeError("boom")

        registry.arm("broken", 0.01, _broken)
        registry.arm("ok", 0.02, lambda: fired.append(True))
        await asyncio.sleep(0.05)

        assert fired == [True]

    @pytest.mark.asyncio
    async def test_wait(self, registry):
        """wait()는 지연 후 반환하고 타이머를 남기지 않는다"""
        loop = asyncio.get_running_loop()
        started = loop.time()

        await registry.wait("answer_retry", 0.02)

        assert loop.time() - started >= 0.015
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_wait_cancelled(self, registry):
        """wait() 중 취소되면 타이머도 정리"""
        task = asyncio.create_task(registry.wait("answer_retry", 1.0))
        await asyncio.sleep(0.01)
        assert registry.is_active("answer_retry")

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_get_timer_info(self, registry):
        """타이머 정보 조회 (Task 제외)"""
        registry.arm("gather_timeout", 1.0, lambda: None)

        info = registry.get_timer_info("gather_timeout")

        assert info["delay"] == 1.0
        assert "task" not in info
        assert registry.get_timer_info("missing") is None
        registry.cancel_all()
