"""설정 로더

config/config.yaml 을 읽어 Config 로 검증한다.
LANTALK_<SECTION>_<KEY> 환경 변수는 모델 스키마를 기준으로 해석해 덮어쓴다.
"""

import os
import typing
from pathlib import Path
from typing import Optional, Any, Dict, Tuple
import yaml
from pydantic import BaseModel, ValidationError

from .models import Config
from lantalk.common.logger import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "LANTALK_"
CONFIG_PATH_ENV = "LANTALK_CONFIG_PATH"

_NULL_WORDS = ("none", "null", "")


def resolve_env_key(env_key: str) -> Optional[Tuple[str, str]]:
    """환경 변수 이름을 (section, key) 로 해석

    섹션/키 이름 자체에 '_' 가 들어가므로 단순 분할 대신
    Config 스키마에 실제로 존재하는 조합만 인정한다.

    >>> resolve_env_key("LANTALK_NEGOTIATION_GATHER_TIMEOUT")
    ('negotiation', 'gather_timeout')
    """
    if not env_key.startswith(ENV_PREFIX) or env_key == CONFIG_PATH_ENV:
        return None

    rest = env_key[len(ENV_PREFIX):].lower()
    for section, section_field in Config.model_fields.items():
        if not rest.startswith(section + "_"):
            continue
        key = rest[len(section) + 1:]
        section_model = section_field.annotation
        if isinstance(section_model, type) and issubclass(section_model, BaseModel):
            if key in section_model.model_fields:
                return section, key
    return None


def _field_annotation(section: str, key: str) -> Any:
    return Config.model_fields[section].annotation.model_fields[key].annotation


class ConfigLoader:
    """설정 로더 클래스"""

    def __init__(self, config_path: Optional[str] = None):
        """
        Args:
            config_path: 설정 파일 경로. 생략하면 LANTALK_CONFIG_PATH 또는
                프로젝트의 config/config.yaml (없으면 기본값으로 구성)
        """
        self._explicit_path = config_path is not None
        self.config_path = config_path or self._get_default_config_path()
        self._config: Optional[Config] = None
        self.env_overrides: Dict[str, Any] = {}

    @staticmethod
    def _get_default_config_path() -> str:
        env_path = os.getenv(CONFIG_PATH_ENV)
        if env_path:
            return env_path
        return str(Path(__file__).resolve().parents[2] / "config" / "config.yaml")

    def _read_file(self) -> Dict[str, Any]:
        path = Path(self.config_path)
        if not path.exists():
            if self._explicit_path:
                raise FileNotFoundError(
                    f"설정 파일을 찾을 수 없습니다: {self.config_path}\n"
                    f"config/config.yaml을 참고하여 설정 파일을 생성하세요."
                )
            logger.debug("config_file_missing_using_defaults", path=self.config_path)
            return {}

        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}

    def load(self) -> Config:
        """설정 파일 로드 및 검증

        Returns:
            Config: 검증된 설정 객체

        Raises:
            FileNotFoundError: 명시한 설정 파일이 없는 경우
            ValidationError: 설정 검증 실패 시
            yaml.YAMLError: YAML 파싱 실패 시
        """
        raw_config = self._apply_env_overrides(self._read_file(), os.environ)

        try:
            self._config = Config(**raw_config)
        except ValidationError as e:
            logger.error("config_validation_failed", detail=self._format_validation_error(e))
            raise

        logger.debug(
            "config_loaded",
            path=self.config_path,
            env_overrides=sorted(self.env_overrides),
        )
        return self._config

    def _apply_env_overrides(self, config: Dict[str, Any], environ: typing.Mapping[str, str]) -> Dict[str, Any]:
        """환경 변수 값을 설정 딕셔너리에 반영

        예: LANTALK_NEGOTIATION_GATHER_TIMEOUT=5
            LANTALK_ENGINE_ICE_SERVERS=stun:a.example:3478,stun:b.example:3478
            LANTALK_MEDIA_VIDEO_DEVICE=none   (오디오 전용)
        """
        self.env_overrides = {}
        for env_key, env_value in environ.items():
            if not env_key.startswith(ENV_PREFIX) or env_key == CONFIG_PATH_ENV:
                continue

            resolved = resolve_env_key(env_key)
            if resolved is None:
                logger.debug("config_env_override_ignored", env_key=env_key)
                continue

            section, key = resolved
            value = self._convert_env_value(env_value, _field_annotation(section, key))

            if not isinstance(config.get(section), dict):
                config[section] = {}
            config[section][key] = value
            self.env_overrides[f"{section}.{key}"] = value

        return config

    @staticmethod
    def _convert_env_value(value: str, annotation: Any = None) -> Any:
        """환경 변수 문자열을 필드 타입에 맞게 변환

        annotation 이 없으면 bool / int / float / str 순으로 추정한다.
        숫자와 enum 은 pydantic 이 문자열에서 직접 변환한다.
        """
        args = typing.get_args(annotation)
        if type(None) in args:
            if value.strip().lower() in _NULL_WORDS:
                return None
            annotation = next(a for a in args if a is not type(None))

        if typing.get_origin(annotation) in (list, typing.List):
            return [item.strip() for item in value.split(',') if item.strip()]

        if annotation is bool or annotation is None:
            lowered = value.lower()
            if lowered in ('true', 'yes', 'on'):
                return True
            if lowered in ('false', 'no', 'off'):
                return False

        if annotation is not None:
            return value

        for cast in (int, float):
            try:
                return cast(value)
            except ValueError:
                pass
        return value

    @staticmethod
    def _format_validation_error(error: ValidationError) -> str:
        lines = [
            f"  • {'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in error.errors()
        ]
        return "설정 검증 오류:\n" + "\n".join(lines)

    def reload(self) -> Config:
        return self.load()

    @property
    def config(self) -> Config:
        """마지막으로 로드된 설정

        Raises:
            RuntimeError: 아직 load() 를 호출하지 않은 경우
        """
        if self._config is None:
            raise RuntimeError(
                "설정이 로드되지 않았습니다. load() 메서드를 먼저 호출하세요."
            )
        return self._config


def load_config(config_path: Optional[str] = None) -> Config:
    """ConfigLoader(config_path).load() 단축 함수"""
    return ConfigLoader(config_path).load()
