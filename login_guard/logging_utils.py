"""Structured logging utilities with credential redaction."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from .config import Settings

SENSITIVE_FIELDS = {"password", "access_token", "refresh_token", "authorization", "apikey"}
BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+")
EMAIL_PATTERN = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*(@[A-Za-z0-9.-]+)")
REDACTED = "***REDACTED***"


class RedactingJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that hides credentials and masks e-mail addresses."""

    def process_log_record(self, log_record: Dict[str, Any]) -> Dict[str, Any]:
        data = super().process_log_record(log_record)
        for key, value in list(data.items()):
            data[key] = self._redact_field(key, value)
        return data

    def _redact_field(self, key: str, value: Any) -> Any:
        if key.lower() in SENSITIVE_FIELDS and value is not None:
            return REDACTED
        return self._redact_value(value)

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, str):
            value = BEARER_PATTERN.sub(r"\g<1>" + REDACTED, value)
            return EMAIL_PATTERN.sub(r"\g<1>***\g<2>", value)
        if isinstance(value, dict):
            return {k: self._redact_field(str(k), v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._redact_value(v) for v in value]
        return value


def configure_logging(settings: Settings) -> None:
    """Configure root logger with JSON output and redaction."""

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.captureWarnings(True)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler()
    fmt = RedactingJsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    handler.setFormatter(fmt)
    root_logger.addHandler(handler)
