"""Negotiation 패키지

Offer/Answer 교환 상태 머신과 외부 협력자 인터페이스
"""

from lantalk.negotiation.enums import Role, NegotiationState
from lantalk.negotiation.engine import NegotiationEngine, MediaCapture, CaptureConstraints, LocalMedia
from lantalk.negotiation.session import NegotiationSession
from lantalk.negotiation.controller import NegotiationController

__all__ = [
    "Role",
    "NegotiationState",
    "NegotiationEngine",
    "MediaCapture",
    "CaptureConstraints",
    "LocalMedia",
    "NegotiationSession",
    "NegotiationController",
]
