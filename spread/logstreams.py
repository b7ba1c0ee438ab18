"""Configure the log streams of the application.

All loggers emit one JSON document per line on stderr. Context may be passed
as a dict argument and is merged into the JSON document, eg

    logit.error("cannot create HTTP client", {"reason": "bad certificate"})

"""

import json
import logging
import sys
from datetime import UTC, datetime


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        out = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.msg if isinstance(record.args, dict) else record.getMessage(),
        }

        # Merge structured context, if there is any.
        if isinstance(record.args, dict):
            out.update({str(k): v for k, v in record.args.items()})

        if record.exc_info:
            out["exception"] = self.formatException(record.exc_info)
        return json.dumps(out, default=str)


def setup(level: str) -> None:
    """Send the logs of the `spread` logger to stderr with the desired `level`."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())

    logger = logging.getLogger("spread")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False

    # HTTPX logs every request at INFO level.
    logging.getLogger("httpx").setLevel("WARNING")
