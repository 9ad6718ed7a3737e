"""SDP Parser

축소 규칙에 필요한 만큼만 SDP 라인을 파싱
(RFC 4566 라인 형식, RFC 8839 candidate 속성)
"""

import ipaddress
from typing import Optional

from lantalk.sdp.models import LineClass, MediaLine, Candidate

SESSION_PREFIXES = ('v=', 'o=', 's=', 't=', 'c=')

# 섹션마다 한 번씩만 등장하는 속성
SINGLETON_PREFIXES = (
    'a=ice-ufrag:',
    'a=ice-pwd:',
    'a=fingerprint:',
    'a=setup:',
    'a=rtcp-mux',
    'a=rtcp:',
    'a=mid:',
    'a=sendrecv',
    'a=recvonly',
    'a=sendonly',
    'a=inactive',
)

CODEC_PREFIXES = ('a=rtpmap:', 'a=fmtp:')

PRIVATE_IPV4_NETWORKS = (
    ipaddress.IPv4Network('10.0.0.0/8'),
    ipaddress.IPv4Network('172.16.0.0/12'),
    ipaddress.IPv4Network('192.168.0.0/16'),
)


class SDPParser:
    """SDP 라인 파서

    전체 SDP 객체 모델을 만들지 않고, 라인 단위 분류와
    m= / a=candidate: 필드 추출만 제공한다.
    """

    @staticmethod
    def classify(line: str) -> LineClass:
        """라인 분류 (우선순위: session → media → singleton → codec → candidate)

        Args:
            line: 앞뒤 공백이 제거된 SDP 라인

        Returns:
            LineClass
        """
        if line.startswith(SESSION_PREFIXES):
            return LineClass.SESSION
        if line.startswith('m='):
            return LineClass.MEDIA
        if line.startswith(SINGLETON_PREFIXES):
            return LineClass.SINGLETON
        if line.startswith(CODEC_PREFIXES):
            return LineClass.CODEC
        if line.startswith('a=candidate:'):
            return LineClass.CANDIDATE
        if line.startswith('a=end-of-candidates'):
            return LineClass.END_OF_CANDIDATES
        return LineClass.OTHER

    @staticmethod
    def parse_media_line(line: str) -> MediaLine:
        """미디어 라인 파싱 (실패하지 않음)

        예: m=audio 9 UDP/TLS/RTP/SAVPF 111 0

        Args:
            line: m= 라인 전체

        Returns:
            MediaLine (필드가 부족하면 빈 값으로 채움)
        """
        value = line[2:] if line.startswith('m=') else line
        parts = value.split()

        media_type = parts[0] if parts else ""
        port: Optional[int] = None
        if len(parts) > 1:
            try:
                port = int(parts[1].split('/')[0])
            except ValueError:
                port = None
        protocol = parts[2] if len(parts) > 2 else ""
        formats = parts[3:]

        return MediaLine(
            media_type=media_type,
            port=port,
            protocol=protocol,
            formats=formats,
        )

    @staticmethod
    def parse_candidate_line(line: str) -> Optional[Candidate]:
        """ICE 후보 라인 파싱

        Args:
            line: a=candidate: 라인

        Returns:
            Candidate 또는 None (필드 부족)
        """
        value = line.split(':', 1)[1] if ':' in line else line
        parts = value.split()
        if len(parts) < 6:
            return None

        candidate_type = None
        for i, token in enumerate(parts[6:], start=6):
            if token == 'typ' and i + 1 < len(parts):
                candidate_type = parts[i + 1]
                break

        return Candidate(
            foundation=parts[0],
            component=parts[1],
            transport=parts[2],
            priority=parts[3],
            address=parts[4],
            port=parts[5],
            candidate_type=candidate_type,
        )

    @staticmethod
    def is_lan_reachable_address(address: str) -> bool:
        """LAN 직접 연결에 쓸 수 있는 주소인지 판단

        IPv4 리터럴이면 사설 대역(10/8, 172.16/12, 192.168/16)이어야 하고,
        IPv4가 아닌 토큰(mDNS 이름, IPv6 등)은 허용한다.
        """
        try:
            ip = ipaddress.IPv4Address(address)
        except ValueError:
            return True
        return any(ip in network for network in PRIVATE_IPV4_NETWORKS)
