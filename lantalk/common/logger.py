"""구조화된 로깅 설정

structlog을 사용한 JSON 구조화 로깅
"""

import sys
import json
import structlog
from typing import Any, Dict
from pathlib import Path
from datetime import datetime, timezone


def add_timestamp(logger: Any, method_name: str, event_dict: Dict) -> Dict:
    """로컬 타임스탬프를 추가하는 프로세서 (밀리초 3자리까지)"""
    now = datetime.now(timezone.utc).astimezone()
    timestamp = now.strftime("%Y-%m-%dT%H:%M:%S")
    milliseconds = f"{now.microsecond // 1000}".zfill(3)
    event_dict["timestamp"] = f"{timestamp}.{milliseconds}"
    return event_dict


def reorder_keys(logger: Any, method_name: str, event_dict: Dict) -> Dict:
    """로그 키 순서를 가독성 좋게 재정렬하는 프로세서

    순서:
    1. timestamp (시간순 정렬 가능)
    2. level (로그 레벨)
    3. event
    4. session_id, role, state (협상 추적)
    5. 나머지 필드들 (알파벳 순)
    """
    priority_keys = [
        "timestamp",
        "level",
        "event",
        "session_id",
        "role",
        "state",
        "from_state",
        "to_state",
        "kind",
    ]

    ordered = {}

    for key in priority_keys:
        if key in event_dict:
            ordered[key] = event_dict[key]

    remaining_keys = sorted([k for k in event_dict.keys() if k not in priority_keys])
    for key in remaining_keys:
        ordered[key] = event_dict[key]

    return ordered


def setup_logging(level: str = "INFO", format_type: str = "json", output: str = "stdout",
                  file_path: str = "logs/lantalk.log") -> None:
    """로깅 설정 초기화

    Args:
        level: 로그 레벨 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 로그 포맷 (json, text)
        output: 로그 출력 (stdout, stderr, file)
        file_path: output이 file일 때 사용할 경로
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        add_timestamp,
        reorder_keys,
    ]

    if format_type == "json":
        # structlog가 serializer를 호출할 때 kwargs를 넘길 수 있으므로 **kwargs 수용
        def _json_serializer(event_dict, **kwargs):
            return json.dumps(event_dict, ensure_ascii=False, default=str)
        processors.append(structlog.processors.JSONRenderer(serializer=_json_serializer))
    else:
        # 개발용 컬러 텍스트 포맷
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    if output == "file":
        log_file = Path(file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # 라인 버퍼링으로 즉시 기록
        log_stream = open(log_file, "a", encoding="utf-8", buffering=1)
    elif output == "stderr":
        # CLI는 stdout을 토큰/QR 출력에 사용한다
        log_stream = sys.stderr
    else:
        log_stream = sys.stdout

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            _log_level_to_int(level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=log_stream),
        cache_logger_on_first_use=False,
    )


def _log_level_to_int(level: str) -> int:
    """로그 레벨 문자열을 정수로 변환"""
    levels = {
        "DEBUG": 10,
        "INFO": 20,
        "WARNING": 30,
        "ERROR": 40,
        "CRITICAL": 50,
    }
    return levels.get(str(getattr(level, "value", level)).upper(), 20)  # 기본값: INFO


def get_logger(name: str) -> structlog.BoundLogger:
    """로거 인스턴스 반환

    Args:
        name: 로거 이름 (일반적으로 __name__)

    Returns:
        structlog.BoundLogger: 바운드 로거 인스턴스

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("offer_ready", session_id=3, token_length=812)
    """
    return structlog.get_logger(name)


def log_with_context(**context: Any) -> structlog.BoundLogger:
    """컨텍스트가 바인딩된 로거 반환

    Example:
        >>> logger = log_with_context(session_id=3, role="host")
        >>> logger.info("gathering_complete")
    """
    return structlog.get_logger().bind(**context)
