"""YAML configuration for restore runs."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .config import (
    ASR_CONNECT_ATTEMPTS,
    ASR_PORT,
    ASR_RETRY_DELAY_SECONDS,
    PROGRESS_EVERY_CHUNKS,
    RESTORED_SERVICE_PORT,
)

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass
class ASRSettings:
    port: int = ASR_PORT
    connect_attempts: int = ASR_CONNECT_ATTEMPTS
    retry_delay: float = ASR_RETRY_DELAY_SECONDS
    max_oob_requests: Optional[int] = None
    progress_every: int = PROGRESS_EVERY_CHUNKS


@dataclass
class LoggingSettings:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class RestoreSettings:
    host: str = "127.0.0.1"
    restore_port: int = RESTORED_SERVICE_PORT
    connect_timeout: float = 10.0
    asr: ASRSettings = field(default_factory=ASRSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


DEFAULT_SETTINGS = RestoreSettings()


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError("restore configuration must be a mapping")
    return data


def _positive_int(section: str, name: str, value: Any, *, allow_none: bool = False) -> Optional[int]:
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{section}.{name} must be a positive integer")
    return value


def _build_asr(data: Optional[Dict[str, Any]]) -> ASRSettings:
    if not data:
        return ASRSettings()
    unknown = set(data) - {"port", "connect_attempts", "retry_delay", "max_oob_requests", "progress_every"}
    if unknown:
        raise ValueError("unknown asr settings: " + ", ".join(sorted(unknown)))
    defaults = ASRSettings()
    retry_delay = data.get("retry_delay", defaults.retry_delay)
    if not isinstance(retry_delay, (int, float)) or retry_delay < 0:
        raise ValueError("asr.retry_delay must be a non-negative number")
    return ASRSettings(
        port=_positive_int("asr", "port", data.get("port", defaults.port)),
        connect_attempts=_positive_int(
            "asr", "connect_attempts", data.get("connect_attempts", defaults.connect_attempts)
        ),
        retry_delay=float(retry_delay),
        max_oob_requests=_positive_int(
            "asr", "max_oob_requests", data.get("max_oob_requests"), allow_none=True
        ),
        progress_every=_positive_int(
            "asr", "progress_every", data.get("progress_every", defaults.progress_every)
        ),
    )


def _build_logging(data: Optional[Dict[str, Any]]) -> LoggingSettings:
    if not data:
        return LoggingSettings()
    level = str(data.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {', '.join(sorted(_LOG_LEVELS))}")
    return LoggingSettings(level=level, file=data.get("file"))


def load_settings(path: str | Path | None) -> RestoreSettings:
    if path is None:
        return RestoreSettings()
    data = _load_yaml(Path(path))
    defaults = RestoreSettings()
    host = data.get("host", defaults.host)
    if not isinstance(host, str) or not host:
        raise ValueError("host must be a non-empty string")
    return RestoreSettings(
        host=host,
        restore_port=_positive_int("restore", "port", data.get("restore_port", defaults.restore_port)),
        connect_timeout=float(data.get("connect_timeout", defaults.connect_timeout)),
        asr=_build_asr(data.get("asr")),
        logging=_build_logging(data.get("logging")),
    )


__all__ = [
    "ASRSettings",
    "DEFAULT_SETTINGS",
    "LoggingSettings",
    "RestoreSettings",
    "load_settings",
]
