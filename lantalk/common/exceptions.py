"""커스텀 예외 클래스

LanTalk 협상 시스템의 모든 커스텀 예외 정의

fatal=True 인 예외는 컨트롤러를 FAILED 상태로 전이시키고,
fatal=False 인 예외는 상태 변경 없이 사용자에게 재입력을 요청한다.
"""


class LanTalkError(Exception):
    """Base exception for all LanTalk errors"""
    fatal: bool = False


# Signaling (코드 교환) Exceptions
class SignalingError(LanTalkError):
    """코드(토큰) 처리 관련 에러"""
    pass


class DecodeError(SignalingError):
    """모든 디코딩 전략으로도 토큰을 읽을 수 없음"""
    pass


class TypeMismatchError(SignalingError):
    """디코딩된 설명의 종류(offer/answer)가 현재 단계와 맞지 않음"""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"Expected an {expected} code but got an {actual} code")
        self.expected = expected
        self.actual = actual


# Session (협상 세션) Exceptions
class SessionError(LanTalkError):
    """협상 세션 관련 에러"""
    pass


class CaptureError(SessionError):
    """미디어 장치 사용 불가 (오디오 전용 재시도까지 실패)"""
    fatal = True


class NegotiationError(SessionError):
    """엔진이 원격 설명을 예상치 못한 시점에 거부"""
    fatal = True


class ConnectivityLostError(SessionError):
    """연결 이후 전송 경로 끊김"""
    fatal = True


class InvalidTransitionError(SessionError):
    """현재 상태에서 허용되지 않는 동작"""

    def __init__(self, operation: str, state: str):
        super().__init__(f"Operation '{operation}' is not valid in state '{state}'")
        self.operation = operation
        self.state = state


# Configuration Exceptions
class ConfigurationError(LanTalkError):
    """설정 관련 에러"""
    fatal = True
