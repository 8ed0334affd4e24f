from __future__ import annotations

import logging
import sys
from typing import Any, Dict, Iterable

from pythonjsonlogger import jsonlogger

MASK = "***"


class _JsonFormatter(jsonlogger.JsonFormatter):
    def __init__(self, *args: Any, service: str, environment: str, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.service = service
        self.environment = environment

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("level"):
            log_record["level"] = record.levelname
        log_record["service"] = self.service
        log_record["environment"] = self.environment
        if record.exc_info and not log_record.get("exc_info"):
            log_record["exc_info"] = self.formatException(record.exc_info)


class SecretMaskingFilter(logging.Filter):
    """Replaces configured credentials in rendered messages.

    Tokens and API keys travel through request options and error strings, so any of them
    can end up in a log line.
    """

    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__()
        # short values would mask ordinary words
        self.secrets = sorted({s for s in secrets if s and len(s) >= 6}, key=len, reverse=True)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self.secrets:
            masked = masked.replace(secret, MASK)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(
    level: str = "INFO",
    *,
    service: str = "qrsong-backend",
    environment: str = "development",
    secrets: Iterable[str] = (),
) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        _JsonFormatter("%(asctime)s %(level)s %(name)s %(message)s", service=service, environment=environment)
    )
    handler.addFilter(SecretMaskingFilter(secrets))

    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()
    root.addHandler(handler)

    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
