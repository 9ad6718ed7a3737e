"""외부 협력자 인터페이스

협상 엔진(WebRTC 스택)과 미디어 캡처 장치에 대한 계약.
컨트롤러는 이 계약 이상으로 엔진 내부를 가정하지 않는다.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable, List, Optional

from lantalk.negotiation.enums import (
    GatheringState,
    ConnectivityState,
    SignalingState,
    EngineEventKind,
)
from lantalk.signaling.models import SessionDescription

EngineCallback = Callable[[EngineEventKind, Any], None]


@dataclass(frozen=True)
class CaptureConstraints:
    """미디어 캡처 제약 조건"""
    audio: bool = True
    video: bool = True
    width: int = 1280
    height: int = 720
    frame_rate: int = 30
    facing_mode: str = "user"
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True

    def audio_only(self) -> "CaptureConstraints":
        """비디오를 뺀 완화된 제약 조건"""
        return replace(self, video=False)

    @classmethod
    def from_config(cls, media_config) -> "CaptureConstraints":
        """MediaConfig로부터 생성"""
        facing_mode = getattr(media_config.facing_mode, "value", media_config.facing_mode)
        return cls(
            video=media_config.video_device is not None,
            width=media_config.width,
            height=media_config.height,
            frame_rate=media_config.frame_rate,
            facing_mode=facing_mode,
        )


@dataclass
class LocalMedia:
    """로컬 미디어 트랙 묶음

    트랙은 stop() 메서드를 가진 객체라면 무엇이든 된다.
    """
    audio_tracks: List[Any] = field(default_factory=list)
    video_tracks: List[Any] = field(default_factory=list)
    facing_mode: str = "user"
    stopped: bool = False

    @property
    def tracks(self) -> List[Any]:
        return self.audio_tracks + self.video_tracks

    @property
    def has_video(self) -> bool:
        return bool(self.video_tracks)

    def replace_video_track(self, track: Any) -> None:
        """비디오 트랙 교체 (기존 트랙은 정지)"""
        for old in self.video_tracks:
            old.stop()
        self.video_tracks = [track]

    def stop(self) -> None:
        """모든 트랙 정지 (멱등)"""
        if self.stopped:
            return
        for track in self.tracks:
            track.stop()
        self.stopped = True


class MediaCapture(ABC):
    """미디어 캡처 협력자"""

    @abstractmethod
    async def acquire(self, constraints: CaptureConstraints) -> LocalMedia:
        """제약 조건에 맞는 로컬 미디어 획득 (실패 시 예외)"""

    @abstractmethod
    async def switch_camera(self, media: LocalMedia, facing_mode: str) -> Any:
        """지정한 방향의 새 비디오 트랙 반환"""


class NegotiationEngine(ABC):
    """미디어/협상 엔진 협력자

    알림은 subscribe()로 등록한 콜백 하나로 전달된다.
    """

    @abstractmethod
    async def create_local_offer(self) -> SessionDescription:
        """로컬 offer 생성"""

    @abstractmethod
    async def create_local_answer(self) -> SessionDescription:
        """로컬 answer 생성 (원격 offer 적용 후)"""

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:
        """로컬 설명 적용"""

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> bool:
        """원격 설명 적용

        Returns:
            적용 성공 여부 (엔진이 거부하면 False)
        """

    @abstractmethod
    def local_description(self) -> Optional[SessionDescription]:
        """현재 로컬 설명 (수집된 후보 포함)"""

    @abstractmethod
    def gathering_state(self) -> GatheringState:
        """후보 수집 상태"""

    @abstractmethod
    def connectivity_state(self) -> ConnectivityState:
        """전송 연결 상태"""

    @abstractmethod
    def signaling_state(self) -> SignalingState:
        """시그널링 상태"""

    @abstractmethod
    async def add_local_media(self, media: LocalMedia) -> None:
        """로컬 트랙을 송신에 연결"""

    @abstractmethod
    def replace_video_track(self, track: Any) -> bool:
        """송신 중인 비디오 트랙 교체"""

    @abstractmethod
    def subscribe(self, callback: EngineCallback) -> None:
        """엔진 알림 구독"""

    @abstractmethod
    async def close(self) -> None:
        """엔진 세션 종료"""
