"""협상 관련 Enum 정의"""

from enum import Enum


class Role(str, Enum):
    """세션 역할"""
    HOST = "host"     # offer 생성
    GUEST = "guest"   # answer 생성


class NegotiationState(str, Enum):
    """협상 상태 머신 상태"""
    IDLE = "idle"
    CREATING_OFFER = "creating_offer"
    OFFER_READY = "offer_ready"           # Host가 offer 코드를 보여주는 중
    AWAITING_OFFER = "awaiting_offer"     # Guest가 offer 코드를 스캔/붙여넣기 대기
    CREATING_ANSWER = "creating_answer"
    ANSWER_READY = "answer_ready"         # Guest가 answer 코드를 보여주는 중
    AWAITING_ANSWER = "awaiting_answer"   # Host가 answer 코드를 스캔/붙여넣기 대기
    CONNECTED = "connected"
    FAILED = "failed"


class GatheringState(str, Enum):
    """ICE 후보 수집 상태"""
    NEW = "new"
    GATHERING = "gathering"
    COMPLETE = "complete"


class ConnectivityState(str, Enum):
    """전송 연결 상태 (ICE connection state)"""
    NEW = "new"
    CHECKING = "checking"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    COMPLETED = "completed"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


class SignalingState(str, Enum):
    """엔진 시그널링 상태"""
    STABLE = "stable"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    HAVE_LOCAL_PRANSWER = "have-local-pranswer"
    HAVE_REMOTE_PRANSWER = "have-remote-pranswer"
    CLOSED = "closed"


class EngineEventKind(str, Enum):
    """엔진 알림 종류"""
    CANDIDATE = "candidate"                     # value: 후보 문자열 (None = 수집 종료)
    GATHERING_STATE = "gathering_state"         # value: GatheringState
    CONNECTIVITY_STATE = "connectivity_state"   # value: ConnectivityState
    TRACK = "track"                             # value: 수신 트랙


# 연결 성립으로 간주하는 전송 상태
CONNECTED_STATES = frozenset({ConnectivityState.CONNECTED, ConnectivityState.COMPLETED})

# 연결 끊김으로 간주하는 전송 상태
FAILURE_STATES = frozenset({
    ConnectivityState.DISCONNECTED,
    ConnectivityState.FAILED,
    ConnectivityState.CLOSED,
})

# answer 생성 이후 정상적으로 올 수 있는 시그널링 상태
POST_ANSWER_SIGNALING_STATES = frozenset({SignalingState.STABLE})

# end()/실패 전이가 의미 있는 상태
ACTIVE_STATES = frozenset(set(NegotiationState) - {NegotiationState.IDLE, NegotiationState.FAILED})
