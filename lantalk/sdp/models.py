"""SDP 데이터 모델

축소(reduce) 처리 중 사용하는 라인 분류 결과와 미디어 섹션 요약
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class LineClass(str, Enum):
    """SDP 라인 분류 (우선순위 순)"""
    SESSION = "session"              # v= o= s= t= c=
    MEDIA = "media"                  # m=
    SINGLETON = "singleton"          # ice-ufrag, ice-pwd, fingerprint, ...
    CODEC = "codec"                  # rtpmap, fmtp
    CANDIDATE = "candidate"          # a=candidate:
    END_OF_CANDIDATES = "end_of_candidates"
    OTHER = "other"                  # 그 외 (모두 제거 대상)


@dataclass
class MediaLine:
    """미디어 헤더 (m= line)

    예: m=audio 9 UDP/TLS/RTP/SAVPF 111 0
    """
    media_type: str          # audio, video, application
    port: Optional[int]      # 미디어 포트 (파싱 불가 시 None)
    protocol: str            # UDP/TLS/RTP/SAVPF, RTP/AVP, ...
    formats: List[str]       # payload types (코덱 리스트)


@dataclass
class Candidate:
    """ICE 후보 (a=candidate: line)

    예: a=candidate:1 1 udp 2122260223 10.0.0.5 54400 typ host generation 0
    """
    foundation: str
    component: str
    transport: str
    priority: str
    address: str
    port: str
    candidate_type: Optional[str] = None

    @property
    def is_udp(self) -> bool:
        return self.transport.lower() == "udp"

    @property
    def is_host(self) -> bool:
        return self.candidate_type == "host"


@dataclass
class SectionSummary:
    """축소 결과의 미디어 섹션 요약"""
    index: int
    media_type: str
    formats: List[str] = field(default_factory=list)
    candidate_address: Optional[str] = None   # 유지된 후보 주소
    candidates_seen: int = 0

    @property
    def kept_candidate(self) -> bool:
        return self.candidate_address is not None


@dataclass
class ReductionReport:
    """SDP 축소 리포트"""
    sections: List[SectionSummary] = field(default_factory=list)
    input_lines: int = 0
    kept_lines: int = 0

    @property
    def dropped_lines(self) -> int:
        return self.input_lines - self.kept_lines

    @property
    def media_count(self) -> int:
        return len(self.sections)
