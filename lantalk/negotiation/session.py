"""Negotiation Session

start/join 시 생성되고 end 시 파기되는 일회성 협상 세션
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from lantalk.negotiation.enums import Role, NegotiationState, EngineEventKind
from lantalk.negotiation.engine import NegotiationEngine, LocalMedia
from lantalk.negotiation.timers import TimerRegistry
from lantalk.signaling.models import SessionDescription

# 프로세스 내에서 단조 증가하는 세션 식별자
_session_ids = itertools.count(1)


def next_session_id() -> int:
    return next(_session_ids)


@dataclass(frozen=True)
class EngineEvent:
    """세션 식별자가 붙은 엔진 알림"""
    session_id: int
    kind: EngineEventKind
    value: Any = None


@dataclass
class NegotiationSession:
    """협상 세션

    컨트롤러 하나가 독점 소유하며, 워크플로 함수에 명시적으로 전달된다.
    """
    role: Role
    engine: NegotiationEngine
    session_id: int = field(default_factory=next_session_id)
    state: NegotiationState = NegotiationState.IDLE

    local_media: Optional[LocalMedia] = None
    local_description: Optional[SessionDescription] = None
    remote_description: Optional[SessionDescription] = None
    local_token: Optional[str] = None
    remote_tracks: List[Any] = field(default_factory=list)

    gathering_done: asyncio.Event = field(default_factory=asyncio.Event)
    gather_timed_out: bool = False
    # fallback 타이머로만 연결 간주된 경우 True (원격 미디어 미확인)
    connected_unconfirmed: bool = False

    workflow: Optional[asyncio.Task] = None
    created_at: datetime = field(default_factory=datetime.now)
    connected_at: Optional[datetime] = None

    def __post_init__(self):
        self.timers = TimerRegistry(owner=f"session-{self.session_id}")

    @property
    def is_busy(self) -> bool:
        """진행 중인 워크플로(offer/answer 생성, answer 적용) 존재 여부"""
        return self.workflow is not None and not self.workflow.done()

    @property
    def call_duration(self) -> Optional[float]:
        """연결 후 경과 시간 (초), 연결 전이면 None"""
        if self.connected_at is None:
            return None
        return round((datetime.now() - self.connected_at).total_seconds(), 3)

    def __repr__(self) -> str:
        return (f"NegotiationSession(id={self.session_id}, role={self.role.value}, "
                f"state={self.state.value})")
