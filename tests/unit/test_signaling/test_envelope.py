"""Envelope Codec 단위 테스트"""

import base64
import json
import zlib
from urllib.parse import quote

import pytest

from lantalk.common.exceptions import DecodeError
from lantalk.signaling.envelope import EnvelopeCodec, encode, decode
from lantalk.signaling.models import SessionKind, SessionDescription


def media_headers(text: str):
    return [line for line in text.splitlines() if line.startswith("m=")]


class TestEncode:
    """인코딩 테스트"""

    def test_round_trip_preserves_kind_and_media(self, codec, offer_sdp):
        """decode(encode(d)) 는 종류와 미디어 헤더 순서를 보존"""
        token = codec.encode(SessionDescription(kind=SessionKind.OFFER, text=offer_sdp))
        description = codec.decode(token)

        assert description.kind == SessionKind.OFFER
        assert media_headers(description.text) == media_headers(offer_sdp)

    def test_token_is_plain_base64(self, codec, answer_sdp):
        token = codec.encode(SessionDescription(kind=SessionKind.ANSWER, text=answer_sdp))

        record = json.loads(zlib.decompress(base64.b64decode(token, validate=True)))

        assert set(record) == {"type", "sdp"}
        assert record["type"] == "answer"

    def test_encode_envelope_metrics(self, codec, offer_sdp):
        envelope = codec.encode_envelope(SessionDescription(kind=SessionKind.OFFER, text=offer_sdp))

        assert envelope.kind == SessionKind.OFFER
        assert envelope.token_length == len(envelope.token)
        assert 0 < envelope.compression_ratio < 1.5
        assert envelope.fits_in_code is True

    def test_oversized_token_flagged(self, offer_sdp):
        codec = EnvelopeCodec(max_token_length=100)

        envelope = codec.encode_envelope(SessionDescription(kind=SessionKind.OFFER, text=offer_sdp))

        assert envelope.fits_in_code is False

    def test_module_functions(self, offer_sdp):
        token = encode(SessionDescription(kind=SessionKind.OFFER, text=offer_sdp))

        assert decode(token).kind == SessionKind.OFFER


class TestDecode:
    """디코딩 전략 테스트"""

    def test_idempotent(self, codec, offer_token):
        assert codec.decode(offer_token) == codec.decode(offer_token)

    def test_surrounding_whitespace(self, codec, offer_token):
        assert codec.decode(f"\n  {offer_token}  \r\n") == codec.decode(offer_token)

    def test_percent_encoded_token(self, codec, offer_token):
        """퍼센트 인코딩된 토큰은 원본과 같은 결과"""
        escaped = quote(offer_token, safe="")
        assert escaped != offer_token

        assert codec.decode(escaped) == codec.decode(offer_token)

    def test_byte_sequence_token(self, codec, offer_token):
        """공백 구분 바이트열 토큰은 원본과 같은 결과"""
        sequence = " ".join(str(b) for b in offer_token.encode("utf-8"))

        assert codec.decode(sequence) == codec.decode(offer_token)

    def test_base64_wrapped_token(self, codec, offer_token):
        wrapped = base64.b64encode(offer_token.encode("utf-8")).decode("ascii")

        assert codec.decode(wrapped) == codec.decode(offer_token)

    def test_legacy_plain_json(self, codec):
        token = json.dumps({"type": "offer", "sdp": "v=0\r\nm=audio 9 RTP/AVP 0\r\n"})

        description = codec.decode(token)

        assert description.kind == SessionKind.OFFER
        assert description.text == "v=0\r\nm=audio 9 RTP/AVP 0\r\n"

    def test_nested_json_record(self, codec):
        inner = json.dumps({"type": "answer", "sdp": "v=0\r\nm=audio 9 RTP/AVP 0\r\n"})
        token = json.dumps({"type": "answer", "sdp": inner})

        description = codec.decode(token)

        assert description.kind == SessionKind.ANSWER
        assert description.text.startswith("v=0\r\n")

    def test_escaped_line_breaks(self, codec):
        token = '{"type":"offer","sdp":"v=0\\\\r\\\\nm=audio 9 RTP/AVP 0\\\\n"}'

        description = codec.decode(token)

        assert description.text == "v=0\r\nm=audio 9 RTP/AVP 0\n"

    def test_compressed_legacy_record(self, codec):
        """축소되지 않은 SDP를 담은 압축 토큰도 그대로 읽는다"""
        payload = json.dumps({"type": "offer", "sdp": "v=0\r\na=extmap:1 x\r\n"}).encode("utf-8")
        token = base64.b64encode(zlib.compress(payload)).decode("ascii")

        assert "a=extmap:1 x" in codec.decode(token).text

    @pytest.mark.parametrize("token", [
        "",
        "   ",
        None,
        "hello world, this is not a code",
        "%ZZ%41",
        "1 2 300",
        '{"type": "pranswer", "sdp": "v=0"}',
        '{"type": "offer", "sdp": 42}',
        '["offer", "v=0"]',
        "AAAA",
        "12 " + "9" * 5000,
        "9" * 5000,
        "[" * 100000,
    ])
    def test_garbage_returns_none(self, codec, token):
        assert codec.decode(token) is None

    def test_decode_or_raise(self, codec):
        with pytest.raises(DecodeError) as exc_info:
            codec.decode_or_raise("not a code")

        assert exc_info.value.fatal is False

    def test_candidates_order(self, offer_token):
        escaped = quote(offer_token, safe="")

        names = [name for name, _ in EnvelopeCodec.candidates(escaped)]

        assert names[0] == "raw"
        assert "percent" in names
