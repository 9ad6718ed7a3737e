"""SDP Reducer

QR 코드에 담을 수 있도록 SDP를 협상에 필요한 최소 라인만 남기고 축소

유지 규칙:
- 세션 레벨 라인 (v= o= s= t= c=)
- 미디어 헤더 (m=)
- 섹션 단일 속성 (ice-ufrag, ice-pwd, fingerprint, setup, rtcp-mux, rtcp, mid, 방향)
- 모든 rtpmap / fmtp (코덱 협상에 필수)
- 섹션당 첫 번째 host/UDP/사설 IPv4(또는 비 IPv4) 후보 하나
- 후보가 유지된 섹션의 end-of-candidates
그 외 라인(extmap, msid, ssrc, bandwidth, 추가 후보 등)은 모두 제거
"""

from typing import Optional, Tuple

from lantalk.sdp.models import LineClass, ReductionReport, SectionSummary
from lantalk.sdp.parser import SDPParser
from lantalk.common.logger import get_logger

logger = get_logger(__name__)


class SDPReducer:
    """SDP 축소기

    순수 함수로 동작하며 예외를 던지지 않는다.
    """

    @staticmethod
    def reduce(text: Optional[str]) -> str:
        """SDP 축소

        Args:
            text: 원본 SDP

        Returns:
            축소된 SDP (입력의 줄바꿈 형식 유지, 마지막 줄바꿈 포함)
        """
        reduced, _ = SDPReducer.reduce_with_report(text)
        return reduced

    @staticmethod
    def reduce_with_report(text: Optional[str]) -> Tuple[str, ReductionReport]:
        """SDP 축소 + 섹션별 요약

        Args:
            text: 원본 SDP

        Returns:
            (축소된 SDP, ReductionReport)
        """
        report = ReductionReport()
        if not text or not isinstance(text, str):
            return "", report

        line_ending = '\r\n' if '\r\n' in text else '\n'
        kept = []
        current: Optional[SectionSummary] = None

        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            report.input_lines += 1

            line_class = SDPParser.classify(line)

            if line_class in (LineClass.SESSION, LineClass.SINGLETON, LineClass.CODEC):
                kept.append(line)

            elif line_class == LineClass.MEDIA:
                media = SDPParser.parse_media_line(line)
                current = SectionSummary(
                    index=len(report.sections),
                    media_type=media.media_type,
                    formats=media.formats,
                )
                report.sections.append(current)
                kept.append(line)

            elif line_class == LineClass.CANDIDATE:
                if current is None:
                    continue
                current.candidates_seen += 1
                if current.kept_candidate:
                    continue
                candidate = SDPParser.parse_candidate_line(line)
                if (candidate is not None
                        and candidate.is_udp
                        and candidate.is_host
                        and SDPParser.is_lan_reachable_address(candidate.address)):
                    current.candidate_address = candidate.address
                    kept.append(line)

            elif line_class == LineClass.END_OF_CANDIDATES:
                if current is not None and current.kept_candidate:
                    kept.append(line)

        report.kept_lines = len(kept)

        for section in report.sections:
            if not section.kept_candidate:
                # 수집이 끝나기 전에 인코딩되었거나 LAN 주소가 없는 경우
                logger.warning("sdp_section_without_candidate",
                               section=section.index,
                               media_type=section.media_type,
                               candidates_seen=section.candidates_seen)

        logger.debug("sdp_reduced",
                     media_count=report.media_count,
                     input_lines=report.input_lines,
                     kept_lines=report.kept_lines)

        if not kept:
            return "", report
        return line_ending.join(kept) + line_ending, report


def reduce_sdp(text: Optional[str]) -> str:
    """SDP 축소 편의 함수"""
    return SDPReducer.reduce(text)
