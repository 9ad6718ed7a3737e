"""Timer Registry

상태 전이가 설정하는 타이머 관리 (gather 타임아웃, fallback 연결, 재시도 지연, 경고 해제)

모든 타이머는 이름으로 등록되며, 상태를 떠나는 모든 경로에서
cancel() / cancel_all()로 명시적으로 취소한다.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional

from lantalk.common.logger import get_logger

logger = get_logger(__name__)


class TimerRegistry:
    """이름 기반 일회성 타이머 관리자"""

    def __init__(self, owner: str = ""):
        """초기화

        Args:
            owner: 로그용 소유자 이름 (예: session-3)
        """
        self.owner = owner
        # 활성 타이머: {name: {'task', 'delay', 'armed_at'}}
        self.active_timers: Dict[str, Dict] = {}

    def arm(self, name: str, delay: float, callback: Callable) -> None:
        """타이머 설정 (같은 이름의 기존 타이머는 취소)

        Args:
            name: 타이머 이름
            delay: 지연 (초)
            callback: 만료 시 호출 (동기 함수 또는 코루틴 함수)
        """
        self.cancel(name)

        task = asyncio.create_task(self._fire(name, delay, callback))
        self.active_timers[name] = {
            'task': task,
            'delay': delay,
            'armed_at': datetime.now(),
        }

        logger.debug("timer_armed", owner=self.owner, timer=name, delay=delay)

    async def _fire(self, name: str, delay: float, callback: Callable) -> None:
        """타이머 만료 처리"""
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return

        # 콜백 안에서 같은 이름으로 다시 arm 할 수 있도록 먼저 제거
        entry = self.active_timers.get(name)
        if entry is not None and entry['task'] is asyncio.current_task():
            del self.active_timers[name]

        logger.debug("timer_fired", owner=self.owner, timer=name)

        try:
            result = callback()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("timer_callback_failed",
                         owner=self.owner,
                         timer=name,
                         error=str(e),
                         exc_info=True)

    async def wait(self, name: str, delay: float) -> None:
        """등록된 타이머로 지연 (취소 시 함께 정리)"""
        done = asyncio.Event()
        self.arm(name, delay, done.set)
        try:
            await done.wait()
        finally:
            self.cancel(name)

    def cancel(self, name: str) -> bool:
        """타이머 취소

        Returns:
            취소 여부 (활성 타이머가 없으면 False)
        """
        entry = self.active_timers.pop(name, None)
        if entry is None:
            return False

        task = entry['task']
        if not task.done() and task is not asyncio.current_task():
            task.cancel()

        logger.debug("timer_cancelled", owner=self.owner, timer=name)
        return True

    def cancel_all(self) -> int:
        """모든 타이머 취소

        Returns:
            취소된 타이머 수
        """
        names = list(self.active_timers.keys())
        for name in names:
            self.cancel(name)
        return len(names)

    def is_active(self, name: str) -> bool:
        """타이머 활성 여부"""
        return name in self.active_timers

    def names(self) -> List[str]:
        """활성 타이머 이름 목록"""
        return list(self.active_timers.keys())

    def get_timer_info(self, name: str) -> Optional[Dict]:
        """타이머 정보 조회 (Task 객체 제외)"""
        if name in self.active_timers:
            info = self.active_timers[name].copy()
            info.pop('task', None)
            return info
        return None

    def __len__(self) -> int:
        return len(self.active_timers)
