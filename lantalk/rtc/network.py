"""로컬 네트워크 주소 조회"""

import socket
import ipaddress

from lantalk.common.logger import get_logger

logger = get_logger(__name__)

UNKNOWN_ADDRESS = "Unknown"

# 실제로 패킷을 보내지 않는다 (UDP connect는 라우팅 테이블만 조회)
_PROBE_ADDRESS = ("8.8.8.8", 80)


def _is_usable(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return not (ip.is_loopback or ip.is_unspecified or ip.is_link_local)


def get_local_ip() -> str:
    """장치의 LAN 주소 조회 (화면 표시용)

    Returns:
        IPv4 주소 문자열 (루프백/미지정 주소는 반환하지 않음, 실패 시 "Unknown")
    """
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(_PROBE_ADDRESS)
            address = s.getsockname()[0]
        finally:
            s.close()
        if _is_usable(address):
            return address
    except OSError as e:
        logger.debug("local_ip_probe_failed", error=str(e))

    try:
        address = socket.gethostbyname(socket.gethostname())
        if _is_usable(address):
            return address
    except OSError as e:
        logger.debug("local_ip_hostname_lookup_failed", error=str(e))

    logger.warning("local_ip_unknown")
    return UNKNOWN_ADDRESS
