"""코드 전달 경계

토큰 문자열 → 스캔 가능한 이미지. 카메라 스캔은 플랫폼 몫이며,
CLI에서는 터미널 QR 출력과 수동 붙여넣기를 사용한다.
"""

import io
from abc import ABC, abstractmethod

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from lantalk.common.logger import get_logger

logger = get_logger(__name__)


class CodeTransport(ABC):
    """토큰 표시 인터페이스"""

    @abstractmethod
    def render(self, token: str) -> str:
        """토큰을 표시 가능한 형태로 변환"""


class QRTerminalTransport(CodeTransport):
    """터미널 ASCII QR 렌더러 (오류 정정 레벨 M)"""

    def __init__(self, border: int = 2, invert: bool = True):
        self.border = border
        self.invert = invert

    def build(self, token: str) -> qrcode.QRCode:
        qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, border=self.border)
        qr.add_data(token)
        qr.make(fit=True)
        return qr

    def render(self, token: str) -> str:
        qr = self.build(token)
        out = io.StringIO()
        qr.print_ascii(out=out, invert=self.invert)
        logger.debug("qr_rendered", version=qr.version, token_length=len(token))
        return out.getvalue()
