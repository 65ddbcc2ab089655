"""
Structured logging configuration.

Every module logs through ``logging.getLogger(__name__)``. This module
installs a single handler on the ``banking_core`` logger that renders
records as JSON lines so balance mutations and verification outcomes
can be searched by account, transfer and reference.
"""

import json
import logging
from datetime import datetime, timezone

# Attributes passed through ``extra=`` that are copied into the output
CONTEXT_FIELDS = (
    "account_id",
    "transfer_id",
    "reference",
    "actor_id",
    "action",
    "amount",
    "balance_kind",
    "status",
)


class JSONFormatter(logging.Formatter):
    """Render a log record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(
    level: str = "INFO",
    json_output: bool = True,
    logger_name: str = "banking_core",
) -> logging.Logger:
    """
    Configure the application logger.

    Existing handlers are removed first so repeated calls (app reloads,
    test runs) do not duplicate output.
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s"
        ))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    return logger
