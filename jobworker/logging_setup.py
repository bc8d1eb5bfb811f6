import json
import logging
import os
import sys
import time
from typing import Any, Dict

# Logs go to stdout as one JSON object per line so the log shipper
# (journald -> CloudWatch agent, docker logging driver, ...) can index fields.
# Root logger defaults to WARNING (boto3/botocore are chatty at INFO),
# the "jobworker" namespace defaults to INFO.

_RESERVED = (
    "args", "msg", "levelname", "name", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno",
    "funcName", "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "taskName", "levelno",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # anything passed through `extra=` ends up as a record attribute
        for k, v in record.__dict__.items():
            if k in _RESERVED or k.startswith("_"):
                continue
            payload.setdefault(k, v)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(verbose: bool = False) -> None:
    """
    Setup logging with JSON formatting.

    Args:
        verbose: If True, sets the jobworker logger to DEBUG and root logger to INFO.
                 If False, uses environment variables or defaults (WARNING for root, INFO for jobworker).
    """
    if verbose:
        root_level = "INFO"
        app_level = "DEBUG"
    else:
        root_level = os.environ.get("JOBWORKER_ROOT_LOG_LEVEL", "WARNING").upper()
        app_level = os.environ.get("JOBWORKER_APP_LOG_LEVEL", "INFO").upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    # Handler should not filter - let loggers control what gets through
    handler.setLevel(logging.DEBUG)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    root.addHandler(handler)

    app_logger = logging.getLogger("jobworker")
    app_logger.setLevel(app_level)
    app_logger.propagate = True  # still go to root handler
