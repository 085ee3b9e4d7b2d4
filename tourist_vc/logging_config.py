"""JSON logging for the credential service."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from .config import settings

# Extra attributes copied from log records into the JSON payload.
CONTEXT_FIELDS = ("run_id", "user_id", "vc_id", "step", "route")


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record):
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k in CONTEXT_FIELDS:
            if hasattr(record, k):
                payload[k] = getattr(record, k)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(log_level: Optional[str] = None, log_file: Optional[str] = None):
    """Install JSON handlers on the root logger.

    Args:
        log_level: Defaults to ``settings.LOG_LEVEL``.
        log_file: Optional append-mode log file; defaults to ``settings.LOG_FILE``.
    """
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JsonFormatter())
    handlers = [console_handler]

    log_file = log_file or settings.LOG_FILE
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(JsonFormatter())
        handlers.append(file_handler)

    root = logging.getLogger()
    log_level = (log_level or settings.LOG_LEVEL).upper()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.handlers = handlers
