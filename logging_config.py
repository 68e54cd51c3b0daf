"""
SealDeal - Logging Configuration
Console logging with an optional structured JSON format
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict


class JSONFormatter(logging.Formatter):
    """One JSON object per log line"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "deal_id"):
            log_data["deal_id"] = record.deal_id

        return json.dumps(log_data)


class DetailedFormatter(logging.Formatter):
    """Human-readable formatter for local runs"""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)-18s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging(level: str = "INFO", enable_json: bool = False) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        enable_json: Emit JSON lines (Cloud Logging friendly) instead of text
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if enable_json else DetailedFormatter())
    root_logger.addHandler(handler)

    # Quiet the chatty client libraries
    for noisy in ("httpx", "urllib3", "google.auth"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger
