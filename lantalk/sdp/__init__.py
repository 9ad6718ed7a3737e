"""SDP 패키지

세션 설명 라인 분류 및 축소
"""

from lantalk.sdp.models import LineClass, MediaLine, Candidate, SectionSummary, ReductionReport
from lantalk.sdp.parser import SDPParser
from lantalk.sdp.reducer import SDPReducer, reduce_sdp

__all__ = [
    "LineClass",
    "MediaLine",
    "Candidate",
    "SectionSummary",
    "ReductionReport",
    "SDPParser",
    "SDPReducer",
    "reduce_sdp",
]
