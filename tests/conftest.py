"""pytest 설정 파일

공통 fixtures 및 테스트 설정 (엔진 / 캡처 테스트 더블 포함)
"""

import asyncio
import tempfile
from pathlib import Path
from typing import Any, List, Optional

import pytest
import pytest_asyncio
import yaml

from lantalk.common.logger import setup_logging
from lantalk.config.models import NegotiationConfig
from lantalk.negotiation.controller import NegotiationController
from lantalk.negotiation.engine import (
    NegotiationEngine,
    MediaCapture,
    CaptureConstraints,
    LocalMedia,
)
from lantalk.negotiation.enums import (
    GatheringState,
    ConnectivityState,
    SignalingState,
    EngineEventKind,
)
from lantalk.signaling.envelope import EnvelopeCodec
from lantalk.signaling.models import SessionKind, SessionDescription


OFFER_SDP = "\r\n".join([
    "v=0",
    "o=- 4611731400430051336 2 IN IP4 127.0.0.1",
    "s=-",
    "t=0 0",
    "a=group:BUNDLE 0 1",
    "a=extmap-allow-mixed",
    "a=msid-semantic: WMS stream",
    "m=audio 9 UDP/TLS/RTP/SAVPF 111 0",
    "c=IN IP4 0.0.0.0",
    "a=rtcp:9 IN IP4 0.0.0.0",
    "a=candidate:1 1 udp 2122260223 10.0.0.5 54400 typ host generation 0",
    "a=candidate:2 1 udp 2122260223 8.8.8.8 54401 typ host generation 0",
    "a=candidate:3 1 tcp 1518280447 10.0.0.5 9 typ host tcptype active",
    "a=candidate:4 1 udp 1686052607 203.0.113.7 54400 typ srflx raddr 10.0.0.5 rport 54400",
    "a=end-of-candidates",
    "a=ice-ufrag:abcd",
    "a=ice-pwd:0123456789abcdefghijklmn",
    "a=fingerprint:sha-256 AB:CD:EF:01:23:45:67:89",
    "a=setup:actpass",
    "a=mid:0",
    "a=extmap:1 urn:ietf:params:rtp-hdrext:ssrc-audio-level",
    "a=sendrecv",
    "a=msid:stream audio0",
    "a=rtcp-mux",
    "a=rtpmap:111 opus/48000/2",
    "a=rtcp-fb:111 transport-cc",
    "a=fmtp:111 minptime=10;useinbandfec=1",
    "a=rtpmap:0 PCMU/8000",
    "a=ssrc:1001 cname:abcdef",
    "m=video 9 UDP/TLS/RTP/SAVPF 96",
    "c=IN IP4 0.0.0.0",
    "a=candidate:5 1 udp 2122260223 192.168.1.20 54402 typ host generation 0",
    "a=ice-ufrag:abcd",
    "a=ice-pwd:0123456789abcdefghijklmn",
    "a=fingerprint:sha-256 AB:CD:EF:01:23:45:67:89",
    "a=setup:actpass",
    "a=mid:1",
    "a=sendrecv",
    "a=rtcp-mux",
    "a=rtpmap:96 VP8/90000",
    "b=AS:2000",
    "",
])

ANSWER_SDP = "\r\n".join([
    "v=0",
    "o=- 8291736450012837465 2 IN IP4 127.0.0.1",
    "s=-",
    "t=0 0",
    "m=audio 9 UDP/TLS/RTP/SAVPF 111",
    "c=IN IP4 0.0.0.0",
    "a=candidate:1 1 udp 2122260223 192.168.1.31 50000 typ host generation 0",
    "a=end-of-candidates",
    "a=ice-ufrag:wxyz",
    "a=ice-pwd:zyxwvutsrqponmlkjihgfedc",
    "a=fingerprint:sha-256 01:23:45:67:89:AB:CD:EF",
    "a=setup:active",
    "a=mid:0",
    "a=sendrecv",
    "a=rtcp-mux",
    "a=rtpmap:111 opus/48000/2",
    "",
])


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """테스트용 로깅 설정"""
    setup_logging(level="DEBUG", format_type="text")


# ===== 설정 파일 =====

@pytest.fixture
def temp_config_file():
    """임시 설정 파일 fixture"""
    config_data = {
        "negotiation": {
            "gather_timeout": 8.0,
            "fallback_connect_timeout": 12.0,
            "answer_retry_delay": 0.5,
        },
        "codec": {
            "compression_level": 6,
        },
        "media": {
            "video_device": "/dev/video2",
            "facing_mode": "environment",
        },
        "engine": {
            "ice_servers": [],
        },
        "logging": {
            "level": "INFO",
            "format": "json",
        },
    }

    with tempfile.NamedTemporaryFile(
        mode='w',
        suffix='.yaml',
        delete=False,
        encoding='utf-8'
    ) as f:
        yaml.dump(config_data, f)
        temp_path = f.name

    yield temp_path

    Path(temp_path).unlink(missing_ok=True)


@pytest.fixture
def invalid_config_file():
    """잘못된 설정 파일 fixture"""
    config_data = {
        "negotiation": {
            "gather_timeout": 10.0,
            "fallback_connect_timeout": 5.0,  # gather_timeout 보다 짧음
        },
        "codec": {
            "compression_level": 12,  # 1-9 범위 초과
        },
    }

    with tempfile.NamedTemporaryFile(
        mode='w',
        suffix='.yaml',
        delete=False,
        encoding='utf-8'
    ) as f:
        yaml.dump(config_data, f)
        temp_path = f.name

    yield temp_path

    Path(temp_path).unlink(missing_ok=True)


# ===== SDP / 토큰 =====

@pytest.fixture
def offer_sdp() -> str:
    return OFFER_SDP


@pytest.fixture
def answer_sdp() -> str:
    return ANSWER_SDP


@pytest.fixture
def codec() -> EnvelopeCodec:
    return EnvelopeCodec()


@pytest.fixture
def offer_token(codec) -> str:
    return codec.encode(SessionDescription(kind=SessionKind.OFFER, text=OFFER_SDP))


@pytest.fixture
def answer_token(codec) -> str:
    return codec.encode(SessionDescription(kind=SessionKind.ANSWER, text=ANSWER_SDP))


# ===== 테스트 더블 =====

class FakeTrack:
    """stop()만 가진 미디어 트랙"""

    def __init__(self, kind: str, label: str = ""):
        self.kind = kind
        self.label = label
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeEngine(NegotiationEngine):
    """스크립트 가능한 협상 엔진

    - auto_gather: 로컬 설명 적용 즉시 수집 완료
    - remote_results: set_remote_description 결과를 순서대로 지정 (비면 정상 적용)
    """

    def __init__(self, auto_gather: bool = True, remote_results: Optional[List[bool]] = None):
        self.auto_gather = auto_gather
        self.remote_results = list(remote_results or [])
        self.callback = None
        self._gathering = GatheringState.NEW
        self._connectivity = ConnectivityState.NEW
        self._signaling = SignalingState.STABLE
        self._local: Optional[SessionDescription] = None
        self.remote: Optional[SessionDescription] = None
        self.media: Optional[LocalMedia] = None
        self.replaced_tracks: List[Any] = []
        self.remote_attempts = 0
        self.closed = False

    def subscribe(self, callback):
        self.callback = callback

    def emit(self, kind: EngineEventKind, value: Any = None):
        if self.callback is not None:
            self.callback(kind, value)

    def complete_gathering(self):
        self._gathering = GatheringState.COMPLETE
        self.emit(EngineEventKind.GATHERING_STATE, GatheringState.COMPLETE)

    def set_connectivity(self, state: ConnectivityState):
        self._connectivity = state
        self.emit(EngineEventKind.CONNECTIVITY_STATE, state)

    async def create_local_offer(self) -> SessionDescription:
        return SessionDescription(kind=SessionKind.OFFER, text=OFFER_SDP)

    async def create_local_answer(self) -> SessionDescription:
        return SessionDescription(kind=SessionKind.ANSWER, text=ANSWER_SDP)

    async def set_local_description(self, description: SessionDescription) -> None:
        self._local = description
        if description.kind == SessionKind.OFFER:
            self._signaling = SignalingState.HAVE_LOCAL_OFFER
        else:
            self._signaling = SignalingState.STABLE
        self._gathering = GatheringState.GATHERING
        if self.auto_gather:
            self.complete_gathering()

    async def set_remote_description(self, description: SessionDescription) -> bool:
        self.remote_attempts += 1
        if self.remote_results and not self.remote_results.pop(0):
            return False
        self.remote = description
        if description.kind == SessionKind.OFFER:
            self._signaling = SignalingState.HAVE_REMOTE_OFFER
        else:
            self._signaling = SignalingState.STABLE
        return True

    def local_description(self) -> Optional[SessionDescription]:
        return self._local

    def gathering_state(self) -> GatheringState:
        return self._gathering

    def connectivity_state(self) -> ConnectivityState:
        return self._connectivity

    def signaling_state(self) -> SignalingState:
        return self._signaling

    async def add_local_media(self, media: LocalMedia) -> None:
        self.media = media

    def replace_video_track(self, track: Any) -> bool:
        self.replaced_tracks.append(track)
        return True

    async def close(self) -> None:
        self.closed = True


class FakeCapture(MediaCapture):
    """장치 실패를 흉내낼 수 있는 캡처"""

    def __init__(self, fail_video: bool = False, fail_all: bool = False, fail_switch: bool = False):
        self.fail_video = fail_video
        self.fail_all = fail_all
        self.fail_switch = fail_switch
        self.requests: List[CaptureConstraints] = []
        self.acquired: List[LocalMedia] = []

    async def acquire(self, constraints: CaptureConstraints) -> LocalMedia:
        self.requests.append(constraints)
        if self.fail_all or (self.fail_video and constraints.video):
            raise RuntimeError("device unavailable")
        media = LocalMedia(
            audio_tracks=[FakeTrack("audio")] if constraints.audio else [],
            video_tracks=[FakeTrack("video", constraints.facing_mode)] if constraints.video else [],
            facing_mode=constraints.facing_mode,
        )
        self.acquired.append(media)
        return media

    async def switch_camera(self, media: LocalMedia, facing_mode: str) -> Any:
        if self.fail_switch:
            raise RuntimeError("camera busy")
        return FakeTrack("video", facing_mode)


@pytest.fixture
def fast_config() -> NegotiationConfig:
    """짧은 타이머 설정"""
    return NegotiationConfig(
        gather_timeout=0.05,
        fallback_connect_timeout=0.2,
        answer_retry_delay=0.01,
        warning_dismiss_timeout=0.1,
    )


@pytest.fixture
def engines() -> List[FakeEngine]:
    """컨트롤러가 만든 엔진 목록 (세션 순서)"""
    return []


@pytest.fixture
def engine_options() -> dict:
    """다음에 생성될 엔진의 옵션 (테스트에서 수정)"""
    return {}


@pytest.fixture
def capture() -> FakeCapture:
    return FakeCapture()


@pytest_asyncio.fixture
async def controller(engines, engine_options, capture, fast_config):
    """FakeEngine / FakeCapture 기반 컨트롤러"""

    def _factory():
        engine = FakeEngine(**engine_options)
        engines.append(engine)
        return engine

    ctrl = NegotiationController(
        engine_factory=_factory,
        capture=capture,
        config=fast_config,
    )
    yield ctrl
    await ctrl.close()


async def drain(ctrl: NegotiationController) -> None:
    """대기 중인 엔진 알림을 모두 처리"""
    await asyncio.wait_for(ctrl._events.join(), timeout=1.0)


@pytest.fixture
def drain_events():
    return drain
