"""aiortc 어댑터"""

from lantalk.rtc.aiortc_engine import AiortcEngine, AiortcMediaCapture
from lantalk.rtc.network import get_local_ip

__all__ = ["AiortcEngine", "AiortcMediaCapture", "get_local_ip"]
