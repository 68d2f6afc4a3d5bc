import json
import logging
from datetime import UTC, datetime

# Structured fields copied from ``extra=`` onto the JSON line when present.
LOG_FIELDS = (
    "request_id",
    "trace_id",
    "route",
    "provider",
    "model",
    "service",
    "identifier",
    "attempt",
    "max_attempts",
    "delay_s",
    "error_kind",
    "status_code",
    "latency_ms",
    "message_count",
    "dropped_messages",
)

# httpx logs every request URL at INFO
QUIET_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        for field in LOG_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_type"] = record.exc_info[0].__name__
        return json.dumps(payload, ensure_ascii=True)


def configure_logging(log_level: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
