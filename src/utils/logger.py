# src/utils/logger.py
from __future__ import annotations
# === KONTEKST ===
# Loguru dla rdzenia insightów: konsola + opcjonalny plik, most z std logging
# (SDK openai/httpx/google/grpc) i request_id przez logger.contextualize,
# żeby wszystkie logi jednego batcha prefetchu dało się zgrupować.

import logging
import pathlib
import sys
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from loguru import logger

from src.utils.secrets import get_bool, get_secret

SDK_LOGGERS = ("openai", "httpx", "google", "grpc")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[mod]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "rid={extra[request_id]} | "
    "<level>{message}</level>"
)


# ========================================================================================
# KONFIGURACJA
# ========================================================================================

@dataclass(frozen=True)
class LogCfg:
    level: str = "INFO"
    json_console: bool = False
    file_path: Optional[str] = None      # None -> tylko konsola
    rotation: str = "5 MB"
    retention: str = "7 days"
    service: str = "ga4-insights"
    environment: str = "dev"


def read_log_cfg() -> LogCfg:
    """LogCfg z ENV / .env (LOG_LEVEL, LOG_JSON, LOG_FILE, ...)."""
    d = LogCfg()
    return LogCfg(
        level=str(get_secret("LOG_LEVEL", d.level)).upper(),
        json_console=get_bool("LOG_JSON", d.json_console),
        file_path=get_secret("LOG_FILE"),
        rotation=get_secret("LOG_ROTATION", d.rotation),
        retention=get_secret("LOG_RETENTION", d.retention),
        service=get_secret("SERVICE_NAME", d.service),
        environment=get_secret("ENVIRONMENT", d.environment),
    )


# ========================================================================================
# STD LOGGING -> LOGURU
# ========================================================================================

class InterceptHandler(logging.Handler):
    """Przekierowuje rekordy std logging (SDK) do loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).bind(mod=record.name).log(level, record.getMessage())


def _bridge_sdk_loggers(level: str) -> None:
    handler = InterceptHandler()
    for name in SDK_LOGGERS:
        sdk = logging.getLogger(name)
        sdk.handlers = [handler]
        sdk.setLevel(level)
        sdk.propagate = False


# ========================================================================================
# PUBLIC API
# ========================================================================================

def _defaults(record: dict) -> bool:
    record["extra"].setdefault("mod", "-")
    record["extra"].setdefault("request_id", "-")
    return True


def configure_logger(cfg: Optional[LogCfg] = None):
    """
    Konfiguruje globalny logger loguru (wołane raz przez hosta).

    Args:
        cfg: Konfiguracja; domyślnie z ENV (read_log_cfg)

    Returns:
        logger z podbindowanymi service/environment
    """
    cfg = cfg or read_log_cfg()
    logger.remove()
    logger.add(
        sys.stderr,
        level=cfg.level,
        serialize=cfg.json_console,
        format=CONSOLE_FORMAT,
        filter=_defaults,
    )
    if cfg.file_path:
        path = pathlib.Path(cfg.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(path),
            level="DEBUG",
            rotation=cfg.rotation,
            retention=cfg.retention,
            format=CONSOLE_FORMAT,
            colorize=False,
            filter=_defaults,
        )
    _bridge_sdk_loggers(cfg.level)
    logger.configure(extra={"service": cfg.service, "environment": cfg.environment})
    return logger


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """
    Wszystkie logi w bloku (także z tasków asyncio tworzonych w środku)
    dostają ten sam request_id.
    """
    rid = request_id or uuid.uuid4().hex[:12]
    with logger.contextualize(request_id=rid):
        yield rid


def get_logger(name: str = "app"):
    """Zwraca logger z podbindowaną nazwą modułu."""
    return logger.bind(mod=name)
