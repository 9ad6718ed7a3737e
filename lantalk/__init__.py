"""LanTalk

서버 없이 코드 교환만으로 LAN P2P 통화를 연결하는 시그널링 라이브러리
"""

__version__ = "0.1.0"
