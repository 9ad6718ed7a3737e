"""Signaling 패키지

세션 설명 ↔ 전달 가능한 토큰 변환
"""

from lantalk.signaling.models import SessionKind, SessionDescription, EncodedEnvelope
from lantalk.signaling.envelope import EnvelopeCodec, encode, decode

__all__ = [
    "SessionKind",
    "SessionDescription",
    "EncodedEnvelope",
    "EnvelopeCodec",
    "encode",
    "decode",
]
