"""QR 터미널 렌더링 테스트"""

from qrcode.constants import ERROR_CORRECT_M

from lantalk.signaling.models import SessionKind, SessionDescription
from lantalk.transport.qr import CodeTransport, QRTerminalTransport


class TestQRTerminalTransport:
    """QRTerminalTransport 테스트"""

    def test_is_code_transport(self):
        assert isinstance(QRTerminalTransport(), CodeTransport)

    def test_error_correction_level(self):
        qr = QRTerminalTransport().build("hello")

        assert qr.error_correction == ERROR_CORRECT_M

    def test_render(self):
        rendered = QRTerminalTransport().render("hello")

        assert len(rendered.splitlines()) > 5

    def test_render_offer_token(self, codec, offer_sdp):
        token = codec.encode(SessionDescription(kind=SessionKind.OFFER, text=offer_sdp))

        qr = QRTerminalTransport().build(token)

        assert 1 <= qr.version <= 40
