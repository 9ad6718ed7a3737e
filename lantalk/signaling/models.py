"""Signaling 데이터 모델

Offer / Answer 세션 설명과 인코딩 결과
"""

from dataclasses import dataclass
from enum import Enum


class SessionKind(str, Enum):
    """세션 설명 종류 (와이어 값과 동일)"""
    OFFER = "offer"
    ANSWER = "answer"


@dataclass(frozen=True)
class SessionDescription:
    """세션 설명 (kind + SDP 텍스트)"""
    kind: SessionKind
    text: str

    def __repr__(self) -> str:
        return f"SessionDescription(kind={self.kind.value}, length={len(self.text)})"


@dataclass(frozen=True)
class EncodedEnvelope:
    """인코딩된 토큰과 관측용 수치"""
    token: str
    kind: SessionKind
    payload_length: int      # 직렬화된 레코드 길이 (압축 전)
    max_token_length: int

    @property
    def token_length(self) -> int:
        return len(self.token)

    @property
    def compression_ratio(self) -> float:
        if self.payload_length == 0:
            return 0.0
        return self.token_length / self.payload_length

    @property
    def fits_in_code(self) -> bool:
        return self.token_length <= self.max_token_length
