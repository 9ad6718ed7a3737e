"""Envelope Codec

세션 설명 ↔ 전송 가능한 토큰 변환

인코딩: reduce → {"type","sdp"} 컴팩트 JSON → zlib → base64
디코딩: 전송 중 변형된 토큰(카메라 숫자열, 퍼센트 인코딩, base64 재포장)을
        여러 후보 문자열로 복원한 뒤 첫 번째로 성공하는 결과를 사용
"""

import re
import json
import zlib
import base64
import binascii
from typing import Callable, List, Optional, Tuple
from urllib.parse import unquote

from lantalk.sdp.reducer import SDPReducer
from lantalk.signaling.models import SessionKind, SessionDescription, EncodedEnvelope
from lantalk.common.exceptions import DecodeError
from lantalk.monitoring.metrics import get_metrics
from lantalk.common.logger import get_logger

logger = get_logger(__name__)

BYTE_SEQUENCE_PATTERN = re.compile(r'^\d{1,3}(\s+\d{1,3})+$')
PERCENT_ESCAPE_PATTERN = re.compile(r'%[0-9A-Fa-f]{2}')
BASE64_PATTERN = re.compile(r'^[A-Za-z0-9+/=]+$')

DEFAULT_COMPRESSION_LEVEL = 9
# QR version 40, 오류 정정 M, byte 모드 최대 용량
DEFAULT_MAX_TOKEN_LENGTH = 2331

Candidate = Tuple[str, str]   # (전략 이름, 후보 문자열)


# ===== 후보 문자열 생성 =====

def _from_byte_sequence(token: str) -> Optional[str]:
    """공백으로 구분된 0-255 정수열을 UTF-8 텍스트로 복원"""
    if not BYTE_SEQUENCE_PATTERN.match(token):
        return None
    values = [int(v) for v in token.split()]
    if any(v > 255 for v in values):
        return None
    try:
        return bytes(values).decode('utf-8')
    except UnicodeDecodeError:
        return None


def _from_percent_escapes(token: str) -> Optional[str]:
    """퍼센트 인코딩 해제"""
    if not PERCENT_ESCAPE_PATTERN.search(token):
        return None
    try:
        return unquote(token, errors='strict')
    except UnicodeDecodeError:
        return None


def _from_base64_wrapping(token: str) -> Optional[str]:
    """base64로 한 번 더 감싸진 토큰 복원"""
    if not BASE64_PATTERN.match(token) or len(token) % 4 != 0:
        return None
    try:
        return base64.b64decode(token, validate=True).decode('utf-8')
    except (binascii.Error, UnicodeDecodeError):
        return None


CANDIDATE_STRATEGIES: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ("byte_sequence", _from_byte_sequence),
    ("percent", _from_percent_escapes),
    ("base64", _from_base64_wrapping),
]


# ===== 레코드 파싱 =====

def _parse_compressed(candidate: str) -> Optional[dict]:
    """base64 → zlib 해제 → JSON"""
    try:
        compressed = base64.b64decode(candidate)
        payload = zlib.decompress(compressed).decode('utf-8')
        record = json.loads(payload)
    except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError, RecursionError):
        return None
    return record if isinstance(record, dict) else None


def _parse_plain(candidate: str) -> Optional[dict]:
    """압축되지 않은(레거시) JSON 레코드"""
    try:
        record = json.loads(candidate)
    except (ValueError, RecursionError):
        return None
    return record if isinstance(record, dict) else None


RECORD_PARSERS: List[Callable[[str], Optional[dict]]] = [_parse_compressed, _parse_plain]


def _unescape_line_breaks(text: str) -> str:
    """문자 그대로의 \\r\\n, \\n 시퀀스를 실제 줄바꿈으로 변환"""
    if '\\r\\n' in text or '\\n' in text:
        return text.replace('\\r\\n', '\r\n').replace('\\n', '\n')
    return text


def _record_to_description(record: dict) -> Optional[SessionDescription]:
    """레코드를 SessionDescription으로 변환 (종류 미인식/텍스트 아님이면 None)"""
    text = record.get("sdp")

    # 이전 형식: sdp 필드 안에 {"type","sdp"} JSON이 한 번 더 직렬화됨
    if isinstance(text, str) and text.lstrip().startswith('{'):
        nested = _parse_plain(text)
        if nested is not None:
            text = nested.get("sdp")

    try:
        kind = SessionKind(record.get("type"))
    except ValueError:
        return None

    if not isinstance(text, str):
        return None

    return SessionDescription(kind=kind, text=_unescape_line_breaks(text))


class EnvelopeCodec:
    """엔벨로프 코덱

    동기식이며 공유 가변 상태가 없다.
    """

    def __init__(
        self,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        max_token_length: int = DEFAULT_MAX_TOKEN_LENGTH,
    ):
        """초기화

        Args:
            compression_level: zlib 압축 레벨 (1-9)
            max_token_length: 코드 이미지가 수용 가능한 최대 토큰 길이
        """
        self.compression_level = compression_level
        self.max_token_length = max_token_length

    # ===== 인코딩 =====

    def encode(self, description: SessionDescription) -> str:
        """세션 설명을 토큰으로 인코딩"""
        return self.encode_envelope(description).token

    def encode_envelope(self, description: SessionDescription) -> EncodedEnvelope:
        """세션 설명을 토큰으로 인코딩 (관측 수치 포함)

        Args:
            description: 원본 세션 설명 (축소 전)

        Returns:
            EncodedEnvelope
        """
        reduced, report = SDPReducer.reduce_with_report(description.text)
        payload = json.dumps(
            {"type": description.kind.value, "sdp": reduced},
            separators=(',', ':'),
        )
        compressed = zlib.compress(payload.encode('utf-8'), self.compression_level)
        token = base64.b64encode(compressed).decode('ascii')

        envelope = EncodedEnvelope(
            token=token,
            kind=description.kind,
            payload_length=len(payload),
            max_token_length=self.max_token_length,
        )

        get_metrics().record_token_encoded(
            description.kind.value, envelope.token_length, envelope.compression_ratio
        )

        logger.info("envelope_encoded",
                    kind=description.kind.value,
                    original_length=len(description.text),
                    payload_length=envelope.payload_length,
                    token_length=envelope.token_length,
                    compression_ratio=round(envelope.compression_ratio, 3),
                    media_count=report.media_count)

        if not envelope.fits_in_code:
            get_metrics().record_token_oversized()
            logger.warning("token_exceeds_code_capacity",
                           token_length=envelope.token_length,
                           max_token_length=self.max_token_length)

        return envelope

    # ===== 디코딩 =====

    @staticmethod
    def candidates(token: str) -> List[Candidate]:
        """토큰에서 디코딩 후보 문자열 목록 생성 (순서 유지)"""
        trimmed = token.strip()
        result: List[Candidate] = [("raw", trimmed)]
        for name, strategy in CANDIDATE_STRATEGIES:
            derived = strategy(trimmed)
            if derived is not None:
                result.append((name, derived))
        return result

    def decode(self, token: Optional[str]) -> Optional[SessionDescription]:
        """토큰을 세션 설명으로 디코딩

        Args:
            token: 스캔/붙여넣기로 받은 문자열

        Returns:
            SessionDescription 또는 None (모든 전략 실패)
        """
        if not isinstance(token, str) or not token.strip():
            get_metrics().record_token_decoded(False)
            return None

        for strategy, candidate in self.candidates(token):
            for parse in RECORD_PARSERS:
                record = parse(candidate)
                if record is None:
                    continue
                description = _record_to_description(record)
                if description is not None:
                    get_metrics().record_token_decoded(True, strategy)
                    logger.debug("envelope_decoded",
                                 kind=description.kind.value,
                                 strategy=strategy,
                                 compressed=parse is _parse_compressed)
                    return description

        get_metrics().record_token_decoded(False)
        logger.warning("envelope_decode_failed", token_length=len(token))
        return None

    def decode_or_raise(self, token: Optional[str]) -> SessionDescription:
        """토큰 디코딩 (실패 시 DecodeError)

        Raises:
            DecodeError: 모든 디코딩 전략 실패
        """
        description = self.decode(token)
        if description is None:
            raise DecodeError("Could not read code. Please make sure the entire code was captured.")
        return description


_default_codec = EnvelopeCodec()


def encode(description: SessionDescription) -> str:
    """기본 코덱으로 인코딩"""
    return _default_codec.encode(description)


def decode(token: Optional[str]) -> Optional[SessionDescription]:
    """기본 코덱으로 디코딩"""
    return _default_codec.decode(token)
