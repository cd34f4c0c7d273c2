"""
로깅 설정

콘솔(colorlog), 패키지별 회전 파일, JSON 출력을 지원하고
로그 메시지에 섞여 들어간 OAuth2 비밀값(access_token, client_secret 등)을 가립니다.
요청 처리 중에는 로그마다 추적 id(request_id)를 붙입니다.
환경 변수: LOG_LEVEL, LOG_FORMAT, LOG_DIR, ENABLE_FILE_LOGGING, ENABLE_CONSOLE_LOGGING
"""

import json
import logging
import os
import re
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Set

import colorlog


class LogFormat(Enum):
    """로그 출력 형식"""
    SIMPLE = "simple"
    DETAILED = "detailed"
    JSON = "json"
    COLORED = "colored"


# key=value, "key": "value" 형태 모두 처리
_SECRET_PATTERN = re.compile(
    r"\b(?P<key>access_token|refresh_token|client_secret|password|code)"
    r"(?P<sep>\"?\s*[:=]\s*\"?)(?P<value>[^\s\"&,}]+)",
    re.IGNORECASE,
)


class SecretMaskingFilter(logging.Filter):
    """로그 메시지 안의 토큰/비밀번호 값을 *** 로 치환"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _SECRET_PATTERN.sub(lambda m: f"{m.group('key')}{m.group('sep')}***", message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


# 요청 추적 id (요청 밖에서는 "-")
_request_id: ContextVar[str] = ContextVar("request_id", default="-")


def get_request_id() -> str:
    return _request_id.get()


@contextmanager
def request_id_context(request_id: Optional[str] = None):
    """
    블록 안에서 찍히는 로그에 추적 id 를 붙입니다.

    이미 추적 id 가 있는 컨텍스트(요청 처리 중 실행되는 작업 등)에서는
    request_id 를 주지 않으면 기존 id 를 그대로 사용합니다.

    Yields:
        적용된 추적 id
    """
    if request_id is None and _request_id.get() != "-":
        yield _request_id.get()
        return

    request_id = request_id or uuid.uuid4().hex
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


class RequestIdFilter(logging.Filter):
    """로그 레코드에 request_id 속성 추가"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


class JsonFormatter(logging.Formatter):
    """한 줄 JSON 로그 포매터"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", get_request_id()),
            "message": record.getMessage(),
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class LoggingConfig:
    """로거별 핸들러 구성"""

    FORMATS = {
        LogFormat.SIMPLE: "%(levelname)s - %(name)s - [%(request_id)s] %(message)s",
        LogFormat.DETAILED: "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - [%(request_id)s] %(message)s",
        LogFormat.COLORED: "%(log_color)s%(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s - [%(request_id)s] %(message)s",
    }

    LOG_COLORS = {
        "DEBUG": "cyan",
        "INFO": "green",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "red,bg_white",
    }

    def __init__(
        self,
        level: str = "INFO",
        format_type: LogFormat = LogFormat.DETAILED,
        log_dir: Optional[Path] = None,
        enable_file_logging: bool = True,
        enable_console_logging: bool = True,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
    ):
        self.level = self.parse_level(level)
        self.format_type = format_type
        self.log_dir = log_dir or Path("logs")
        self.enable_file_logging = enable_file_logging
        self.enable_console_logging = enable_console_logging
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self._masking_filter = SecretMaskingFilter()
        self._request_id_filter = RequestIdFilter()
        self._configured: Set[str] = set()

        if self.enable_file_logging:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def parse_level(level: str) -> int:
        value = logging.getLevelName(level.upper())
        if isinstance(value, int):
            return value
        print(f"⚠️  알 수 없는 로그 레벨: {level}. INFO로 설정합니다.", file=sys.stderr)
        return logging.INFO

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """환경 변수에서 로깅 설정 생성"""
        try:
            format_type = LogFormat[os.getenv("LOG_FORMAT", "detailed").upper()]
        except KeyError:
            format_type = LogFormat.DETAILED

        return cls(
            level=os.getenv("LOG_LEVEL", "INFO"),
            format_type=format_type,
            log_dir=Path(os.getenv("LOG_DIR", "logs")),
            enable_file_logging=os.getenv("ENABLE_FILE_LOGGING", "true").lower() == "true",
            enable_console_logging=os.getenv("ENABLE_CONSOLE_LOGGING", "true").lower() == "true",
        )

    def log_file_path(self, logger_name: str) -> Path:
        """
        패키지별 로그 파일 경로

        Examples:
            infra.core.database -> logs/infra/core.log
            modules.refresh_job.refresh_token_job -> logs/modules/refresh_job.log
            __main__ -> logs/__main__.log
        """
        parts = logger_name.split(".")
        if len(parts) < 2 or parts[0] not in ("infra", "modules"):
            return self.log_dir / f"{logger_name.replace('.', '_')}.log"

        package_dir = self.log_dir / parts[0]
        package_dir.mkdir(parents=True, exist_ok=True)
        return package_dir / f"{parts[1]}.log"

    def formatter(self, format_type: Optional[LogFormat] = None) -> logging.Formatter:
        format_type = format_type or self.format_type
        if format_type == LogFormat.JSON:
            return JsonFormatter()
        if format_type == LogFormat.COLORED:
            return colorlog.ColoredFormatter(self.FORMATS[LogFormat.COLORED], log_colors=self.LOG_COLORS)
        return logging.Formatter(self.FORMATS.get(format_type, self.FORMATS[LogFormat.DETAILED]))

    def _handlers(self, level: int, file_path: Path):
        if self.enable_console_logging:
            handler = logging.StreamHandler(sys.stdout)
            # TTY 이고 NO_COLOR 가 없을 때만 컬러
            if sys.stdout.isatty() and not os.getenv("NO_COLOR"):
                handler.setFormatter(self.formatter(LogFormat.COLORED))
            else:
                handler.setFormatter(self.formatter())
            yield handler

        if self.enable_file_logging:
            handler = RotatingFileHandler(
                file_path, maxBytes=self.max_bytes, backupCount=self.backup_count, encoding="utf-8"
            )
            handler.setFormatter(self.formatter())
            yield handler

    def _attach(self, logger: logging.Logger, level: int, file_path: Path) -> None:
        logger.setLevel(level)
        logger.handlers.clear()
        for handler in self._handlers(level, file_path):
            handler.setLevel(level)
            handler.addFilter(self._masking_filter)
            handler.addFilter(self._request_id_filter)
            logger.addHandler(handler)

    def configure_logger(self, logger_name: str, level: Optional[str] = None) -> logging.Logger:
        """로거에 핸들러를 한 번만 붙여서 반환"""
        logger = logging.getLogger(logger_name)
        if logger_name in self._configured:
            return logger

        logger.propagate = False
        self._attach(logger, self.parse_level(level) if level else self.level, self.log_file_path(logger_name))
        self._configured.add(logger_name)
        return logger

    def configure_root_logger(self) -> None:
        """루트 로거 설정 (aiohttp, apscheduler 등 외부 라이브러리 로그)"""
        self._attach(logging.getLogger(), self.level, self.log_dir / "app.log")


_logging_config: Optional[LoggingConfig] = None


def get_logging_config() -> LoggingConfig:
    """현재 로깅 설정 반환 (최초 호출 시 환경 변수로 생성)"""
    global _logging_config

    if _logging_config is None:
        _logging_config = LoggingConfig.from_env()
        _logging_config.configure_root_logger()

    return _logging_config


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """설정된 로거 반환"""
    return get_logging_config().configure_logger(name, level=level)
