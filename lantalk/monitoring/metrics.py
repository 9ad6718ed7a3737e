"""Prometheus Metrics

코드 교환 및 협상 상태 머신 모니터링을 위한 Prometheus 메트릭 정의 및 수집
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CollectorRegistry,
    generate_latest,
    start_http_server,
    CONTENT_TYPE_LATEST,
)
from typing import Optional
import threading

from lantalk.common.logger import get_logger

logger = get_logger(__name__)


class PrometheusMetrics:
    """Prometheus 메트릭 관리자

    모든 메트릭을 중앙에서 관리
    """

    _instance: Optional['PrometheusMetrics'] = None
    _lock = threading.Lock()

    def __new__(cls):
        """Singleton 패턴"""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """메트릭 초기화"""
        if hasattr(self, '_initialized'):
            return

        self._initialized = True
        self.registry = CollectorRegistry()

        # ===== 코덱 메트릭 =====
        self.tokens_encoded_total = Counter(
            'lantalk_tokens_encoded_total',
            'Total negotiation tokens encoded',
            ['kind'],
            registry=self.registry
        )

        self.tokens_decoded_total = Counter(
            'lantalk_tokens_decoded_total',
            'Total negotiation token decode attempts',
            ['result', 'strategy'],
            registry=self.registry
        )

        self.tokens_oversized_total = Counter(
            'lantalk_tokens_oversized_total',
            'Tokens exceeding the scannable code capacity',
            registry=self.registry
        )

        self.envelope_compression_ratio = Histogram(
            'lantalk_envelope_compression_ratio',
            'Token length divided by serialized payload length',
            buckets=[0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 1.0, 1.5],
            registry=self.registry
        )

        self.token_length_chars = Histogram(
            'lantalk_token_length_chars',
            'Encoded token length in characters',
            buckets=[250, 500, 750, 1000, 1500, 2000, 2331, 3000, 4000],
            registry=self.registry
        )

        # ===== 협상 메트릭 =====
        self.state_transitions_total = Counter(
            'lantalk_state_transitions_total',
            'Negotiation state transitions',
            ['from_state', 'to_state'],
            registry=self.registry
        )

        self.negotiation_errors_total = Counter(
            'lantalk_negotiation_errors_total',
            'Negotiation errors by type',
            ['error', 'fatal'],
            registry=self.registry
        )

        self.gather_timeouts_total = Counter(
            'lantalk_gather_timeouts_total',
            'Candidate gathering waits that hit the timeout',
            registry=self.registry
        )

        self.fallback_connects_total = Counter(
            'lantalk_fallback_connects_total',
            'Guest sessions marked connected by the fallback timer',
            registry=self.registry
        )

        self.stale_events_total = Counter(
            'lantalk_stale_events_total',
            'Engine events discarded because their session was superseded',
            registry=self.registry
        )

        self.active_sessions = Gauge(
            'lantalk_active_sessions',
            'Current number of live negotiation sessions',
            registry=self.registry
        )

        logger.info("prometheus_metrics_initialized")

    # ===== 코덱 메트릭 업데이트 메서드 =====

    def record_token_encoded(self, kind: str, token_length: int, compression_ratio: float):
        """토큰 인코딩 기록

        Args:
            kind: offer / answer
            token_length: 토큰 길이 (문자)
            compression_ratio: 토큰 길이 / 직렬화 페이로드 길이
        """
        self.tokens_encoded_total.labels(kind=kind).inc()
        self.token_length_chars.observe(token_length)
        self.envelope_compression_ratio.observe(compression_ratio)

    def record_token_decoded(self, success: bool, strategy: str = "none"):
        """토큰 디코딩 기록

        Args:
            success: 성공 여부
            strategy: 성공한 후보 전략 (실패 시 none)
        """
        result = "success" if success else "failure"
        self.tokens_decoded_total.labels(result=result, strategy=strategy).inc()

    def record_token_oversized(self):
        """코드 용량 초과 토큰 기록"""
        self.tokens_oversized_total.inc()

    # ===== 협상 메트릭 업데이트 메서드 =====

    def record_transition(self, from_state: str, to_state: str):
        """상태 전이 기록"""
        self.state_transitions_total.labels(from_state=from_state, to_state=to_state).inc()

    def record_error(self, error: str, fatal: bool):
        """에러 기록

        Args:
            error: 예외 클래스 이름
            fatal: 치명적 여부
        """
        self.negotiation_errors_total.labels(error=error, fatal=str(fatal).lower()).inc()

    def record_gather_timeout(self):
        """후보 수집 타임아웃 기록"""
        self.gather_timeouts_total.inc()

    def record_fallback_connect(self):
        """fallback 타이머에 의한 연결 간주 기록"""
        self.fallback_connects_total.inc()

    def record_stale_event(self):
        """폐기된 stale 이벤트 기록"""
        self.stale_events_total.inc()

    def set_active_sessions(self, count: int):
        """활성 세션 수 설정"""
        self.active_sessions.set(count)

    # ===== 메트릭 출력 =====

    def generate_metrics(self) -> bytes:
        """Prometheus 형식으로 메트릭 생성"""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        """Content-Type 헤더 반환"""
        return CONTENT_TYPE_LATEST

    def serve(self, port: int) -> None:
        """메트릭 HTTP 엔드포인트 시작 (백그라운드 스레드)"""
        start_http_server(port, registry=self.registry)
        logger.info("prometheus_http_server_started", port=port)


def get_metrics() -> PrometheusMetrics:
    """메트릭 인스턴스 조회

    Returns:
        PrometheusMetrics 인스턴스
    """
    return PrometheusMetrics()
