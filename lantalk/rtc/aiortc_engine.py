"""aiortc 기반 협상 엔진 / 미디어 캡처 어댑터

aiortc는 setLocalDescription() 안에서 후보 수집을 끝내므로,
수집 완료 알림은 로컬 설명 적용 직후에 전달된다.
"""

from typing import Any, Callable, Dict, List, Optional

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer

from lantalk.common.logger import get_logger
from lantalk.config.models import EngineConfig, MediaConfig
from lantalk.negotiation.engine import (
    NegotiationEngine,
    MediaCapture,
    CaptureConstraints,
    LocalMedia,
    EngineCallback,
)
from lantalk.negotiation.enums import (
    GatheringState,
    ConnectivityState,
    SignalingState,
    EngineEventKind,
)
from lantalk.signaling.models import SessionKind, SessionDescription

logger = get_logger(__name__)


def _to_rtc(description: SessionDescription) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=description.text, type=description.kind.value)


def _from_rtc(description: Optional[RTCSessionDescription]) -> Optional[SessionDescription]:
    if description is None or description.type not in ("offer", "answer"):
        return None
    return SessionDescription(kind=SessionKind(description.type), text=description.sdp)


def build_configuration(ice_servers: List[str]) -> RTCConfiguration:
    """ICE 서버 URL 리스트 → RTCConfiguration (빈 리스트 = 호스트 후보만)"""
    return RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])


class AiortcEngine(NegotiationEngine):
    """RTCPeerConnection 래퍼"""

    def __init__(self, config: Optional[EngineConfig] = None,
                 pc_factory: Optional[Callable[..., Any]] = None):
        """초기화

        Args:
            config: 엔진 설정 (ICE 서버)
            pc_factory: 피어 연결 생성 함수 (기본: RTCPeerConnection)
        """
        self.config = config or EngineConfig()
        factory = pc_factory or RTCPeerConnection
        self.pc = factory(configuration=build_configuration(self.config.ice_servers))
        self._callback: Optional[EngineCallback] = None
        self._video_sender = None
        self._closed = False

        self.pc.on("icegatheringstatechange", self._on_gathering_state_change)
        self.pc.on("iceconnectionstatechange", self._on_connectivity_state_change)
        self.pc.on("track", self._on_track)

    # ===== 알림 =====

    def subscribe(self, callback: EngineCallback) -> None:
        self._callback = callback

    def _emit(self, kind: EngineEventKind, value: Any = None) -> None:
        if self._callback is not None:
            self._callback(kind, value)

    def _on_gathering_state_change(self) -> None:
        self._emit(EngineEventKind.GATHERING_STATE, self.gathering_state())

    def _on_connectivity_state_change(self) -> None:
        self._emit(EngineEventKind.CONNECTIVITY_STATE, self.connectivity_state())

    def _on_track(self, track) -> None:
        logger.debug("aiortc_track_received", track_kind=track.kind)
        self._emit(EngineEventKind.TRACK, track)

    # ===== 협상 =====

    async def create_local_offer(self) -> SessionDescription:
        return _from_rtc(await self.pc.createOffer())

    async def create_local_answer(self) -> SessionDescription:
        return _from_rtc(await self.pc.createAnswer())

    async def set_local_description(self, description: SessionDescription) -> None:
        await self.pc.setLocalDescription(_to_rtc(description))

    async def set_remote_description(self, description: SessionDescription) -> bool:
        try:
            await self.pc.setRemoteDescription(_to_rtc(description))
        except Exception as e:
            logger.warning("aiortc_remote_description_rejected",
                           kind=description.kind.value,
                           signaling_state=self.pc.signalingState,
                           error=str(e))
            return False
        return True

    def local_description(self) -> Optional[SessionDescription]:
        return _from_rtc(self.pc.localDescription)

    def gathering_state(self) -> GatheringState:
        return GatheringState(self.pc.iceGatheringState)

    def connectivity_state(self) -> ConnectivityState:
        return ConnectivityState(self.pc.iceConnectionState)

    def signaling_state(self) -> SignalingState:
        return SignalingState(self.pc.signalingState)

    # ===== 미디어 =====

    async def add_local_media(self, media: LocalMedia) -> None:
        for track in media.audio_tracks:
            self.pc.addTrack(track)
        for track in media.video_tracks:
            self._video_sender = self.pc.addTrack(track)

    def replace_video_track(self, track: Any) -> bool:
        if self._video_sender is None:
            return False
        self._video_sender.replaceTrack(track)
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.pc.close()
        logger.debug("aiortc_engine_closed")


class AiortcMediaCapture(MediaCapture):
    """aiortc.contrib.media.MediaPlayer 기반 장치 캡처 (ffmpeg 장치 포맷 사용)"""

    def __init__(self, config: Optional[MediaConfig] = None,
                 player_factory: Optional[Callable[..., Any]] = None):
        self.config = config or MediaConfig()
        self._player_factory = player_factory or MediaPlayer
        self._players: List[Any] = []

    def _video_options(self, constraints: CaptureConstraints) -> Dict[str, str]:
        return {
            "video_size": f"{constraints.width}x{constraints.height}",
            "framerate": str(constraints.frame_rate),
        }

    def _open_video(self, device: str, constraints: CaptureConstraints):
        player = self._player_factory(device,
                                      format=self.config.video_format,
                                      options=self._video_options(constraints))
        if player.video is None:
            raise RuntimeError(f"No video track on device {device}")
        self._players.append(player)
        return player.video

    def _device_for(self, facing_mode: str) -> Optional[str]:
        initial = getattr(self.config.facing_mode, "value", self.config.facing_mode)
        if facing_mode == initial:
            return self.config.video_device
        return self.config.alternate_video_device

    async def acquire(self, constraints: CaptureConstraints) -> LocalMedia:
        """장치 열기 (비디오 → 오디오 순, 실패 시 예외)"""
        media = LocalMedia(facing_mode=constraints.facing_mode)

        if constraints.video:
            device = self._device_for(constraints.facing_mode)
            if device is None:
                raise RuntimeError("No video device configured")
            media.video_tracks.append(self._open_video(device, constraints))

        if constraints.audio and self.config.audio_device:
            try:
                player = self._player_factory(self.config.audio_device,
                                              format=self.config.audio_format)
            except Exception:
                media.stop()
                raise
            if player.audio is None:
                media.stop()
                raise RuntimeError(f"No audio track on device {self.config.audio_device}")
            self._players.append(player)
            media.audio_tracks.append(player.audio)

        logger.info("media_devices_opened",
                    audio=len(media.audio_tracks),
                    video=len(media.video_tracks),
                    facing_mode=media.facing_mode)
        return media

    async def switch_camera(self, media: LocalMedia, facing_mode: str) -> Any:
        device = self._device_for(facing_mode)
        if device is None:
            raise RuntimeError(f"No video device for facing mode {facing_mode}")
        constraints = CaptureConstraints.from_config(self.config)
        return self._open_video(device, constraints)
