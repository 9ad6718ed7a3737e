"""코드 전달 (QR)"""

from lantalk.transport.qr import CodeTransport, QRTerminalTransport

__all__ = ["CodeTransport", "QRTerminalTransport"]
