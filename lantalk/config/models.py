"""설정 모델 정의

Pydantic을 사용한 타입 안전 설정 검증 모델
"""

from typing import List, Optional
from enum import Enum
from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """로그 레벨"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """로그 포맷"""
    JSON = "json"
    TEXT = "text"


class FacingMode(str, Enum):
    """카메라 방향"""
    USER = "user"
    ENVIRONMENT = "environment"


class NegotiationConfig(BaseModel):
    """협상 상태 머신 타이머 설정"""
    gather_timeout: float = Field(default=10.0, gt=0.0, le=120.0, description="ICE 후보 수집 대기 시간 (초)")
    fallback_connect_timeout: float = Field(default=15.0, gt=0.0, le=300.0, description="Guest 연결 추정 타이머 (초)")
    fallback_connect_enabled: bool = Field(default=True, description="stable 상태만으로 연결 간주 허용 여부")
    answer_retry_delay: float = Field(default=0.5, gt=0.0, le=10.0, description="Answer 적용 재시도 대기 (초)")
    warning_dismiss_timeout: float = Field(default=5.0, gt=0.0, le=60.0, description="경고 자동 해제 시간 (초)")
    min_manual_input_length: int = Field(default=20, ge=1, le=1000, description="수동 입력 최소 길이 (미만은 입력 중으로 간주)")

    @field_validator('fallback_connect_timeout')
    @classmethod
    def validate_fallback_timeout(cls, v: float, info) -> float:
        """fallback_connect_timeout이 gather_timeout보다 긴지 검증"""
        if 'gather_timeout' in info.data and v <= info.data['gather_timeout']:
            raise ValueError(
                f"fallback_connect_timeout ({v}) must be greater than gather_timeout ({info.data['gather_timeout']})"
            )
        return v


class CodecConfig(BaseModel):
    """엔벨로프 코덱 설정"""
    compression_level: int = Field(default=9, ge=1, le=9, description="zlib 압축 레벨")
    max_token_length: int = Field(default=2331, ge=100, le=7089, description="코드 이미지 최대 수용 문자 수 (QR v40-M byte)")


class MediaConfig(BaseModel):
    """로컬 미디어 캡처 설정"""
    video_device: Optional[str] = Field(default="/dev/video0", description="비디오 장치 (None이면 오디오 전용)")
    video_format: Optional[str] = Field(default="v4l2", description="비디오 장치 포맷 (ffmpeg)")
    audio_device: Optional[str] = Field(default="default", description="오디오 장치")
    audio_format: Optional[str] = Field(default="pulse", description="오디오 장치 포맷 (ffmpeg)")
    width: int = Field(default=1280, ge=160, le=3840, description="비디오 폭")
    height: int = Field(default=720, ge=120, le=2160, description="비디오 높이")
    frame_rate: int = Field(default=30, ge=1, le=60, description="프레임 레이트")
    facing_mode: FacingMode = Field(default=FacingMode.USER, description="초기 카메라 방향")
    alternate_video_device: Optional[str] = Field(default=None, description="카메라 전환 시 사용할 장치")


class EngineConfig(BaseModel):
    """협상 엔진 설정

    LAN 전용이므로 기본적으로 ICE 서버를 사용하지 않는다.
    """
    ice_servers: List[str] = Field(default=[], description="ICE 서버 URL 리스트")


class LoggingConfig(BaseModel):
    """로깅 설정"""
    level: LogLevel = Field(default=LogLevel.INFO, description="로그 레벨")
    format: LogFormat = Field(default=LogFormat.JSON, description="로그 포맷")
    output: str = Field(default="stderr", description="로그 출력 (stdout, stderr, file)")
    file_path: str = Field(default="logs/lantalk.log", description="로그 파일 경로 (output이 file일 때)")

    @field_validator('output')
    @classmethod
    def validate_output(cls, v: str) -> str:
        """출력 대상 검증"""
        if v not in ("stdout", "stderr", "file"):
            raise ValueError(f"output must be one of stdout, stderr, file (got {v})")
        return v


class MonitoringConfig(BaseModel):
    """모니터링 설정"""
    prometheus_enabled: bool = Field(default=False, description="Prometheus HTTP 노출 여부")
    prometheus_port: int = Field(default=9090, ge=1, le=65535, description="Prometheus 포트")


class Config(BaseModel):
    """전체 설정 모델"""
    negotiation: NegotiationConfig = Field(default_factory=NegotiationConfig)
    codec: CodecConfig = Field(default_factory=CodecConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = {"use_enum_values": True, "validate_assignment": True}
