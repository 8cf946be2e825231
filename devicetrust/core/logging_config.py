"""
Logging for devicetrust.

Every record carries a trace_id; verification sessions set it to their
transaction id so the lines of one handshake can be grepped together. Key
material never reaches a logger, public keys appear only as fingerprints.
"""

import logging
import os
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger

NO_TRACE = "N/A"

JSON_FIELDS = "%(asctime)s %(name)s %(levelname)s %(message)s %(trace_id)s"
TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(trace_id)s] %(message)s"


class TraceIDFilter(logging.Filter):
    """Gives records logged without an adapter the placeholder trace_id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "trace_id"):
            record.trace_id = NO_TRACE  # type: ignore[attr-defined]
        return True


def _formatter(log_format: str) -> logging.Formatter:
    if log_format == "text":
        return logging.Formatter(TEXT_FORMAT)
    return jsonlogger.JsonFormatter(
        JSON_FIELDS,
        rename_fields={"asctime": "timestamp", "name": "logger", "levelname": "level"},
    )


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Replace the root handlers with one stderr handler.

    level and log_format fall back to DEVICETRUST_LOG_LEVEL (INFO) and
    DEVICETRUST_LOG_FORMAT (json). Unknown level names mean INFO.
    """
    name = (level or os.getenv("DEVICETRUST_LOG_LEVEL", "INFO")).upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(TraceIDFilter())
    handler.setFormatter(_formatter((log_format or os.getenv("DEVICETRUST_LOG_FORMAT", "json")).lower()))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(resolved)

    # One INFO line per scrape otherwise
    logging.getLogger("prometheus_client").setLevel(logging.WARNING)


def get_logger(name: str, trace_id: Optional[str] = None) -> logging.LoggerAdapter:
    """Logger whose records carry trace_id."""
    return logging.LoggerAdapter(logging.getLogger(name), {"trace_id": trace_id or NO_TRACE})
