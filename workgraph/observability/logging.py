"""Structured logging for workgraph runs.

Engine records carry run correlation fields (run_id, workflow_id, node,
step, duration_ms, outcome) as LogRecord attributes. JSONFormatter lifts
them to top-level keys so one run can be followed across interleaved
output.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple
from uuid import UUID


# Run correlation fields promoted to top-level keys in JSON output
_RUN_FIELDS = ("run_id", "workflow_id", "node", "step", "duration_ms", "outcome")

# Attributes every LogRecord has; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

# Keyword arguments the stdlib logging calls accept themselves
_LOGGING_KWARGS = ("exc_info", "stack_info", "stacklevel", "extra")


def _run_field(value: Any) -> Any:
    if isinstance(value, (int, float)):
        return value
    return str(value)


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(
        self,
        include_timestamp: bool = True,
        include_level: bool = True,
        include_logger: bool = True,
    ):
        super().__init__()
        self._include_timestamp = include_timestamp
        self._include_level = include_level
        self._include_logger = include_logger

    def _header(self, record: logging.LogRecord) -> Dict[str, Any]:
        header: Dict[str, Any] = {}
        if self._include_timestamp:
            header["timestamp"] = datetime.fromtimestamp(
                record.created, timezone.utc
            ).isoformat()
        if self._include_level:
            header["level"] = record.levelname
        if self._include_logger:
            header["logger"] = record.name
        return header

    def format(self, record: logging.LogRecord) -> str:
        entry = self._header(record)
        entry["message"] = record.getMessage()

        for key in _RUN_FIELDS:
            if hasattr(record, key):
                entry[key] = _run_field(getattr(record, key))

        for key, value in vars(record).items():
            if key in entry or key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if isinstance(value, UUID):
                entry[key] = str(value)
            elif isinstance(value, (str, int, float, bool, type(None))):
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that stamps run context onto every record.

    Keyword arguments other than the stdlib ones (exc_info, stack_info,
    stacklevel, extra) become record attributes for that call only:

        log = get_logger(__name__).with_context(run_id=run_id)
        log.debug("Node completed", node="triage", step=3)
    """

    def __init__(self, logger: logging.Logger, context: Optional[Mapping[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def with_context(self, **fields: Any) -> "ContextLogger":
        """Return a new adapter with ``fields`` added to the context."""
        return ContextLogger(self.logger, {**self.extra, **fields})

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self.extra)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        call_fields = {
            key: kwargs.pop(key) for key in list(kwargs) if key not in _LOGGING_KWARGS
        }
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {}), **call_fields}
        return msg, kwargs


def configure_logging(
    log_format: str = "json",
    log_level: str = "INFO",
    logger_name: Optional[str] = "workgraph",
) -> logging.Logger:
    """
    Configure a workgraph logger with a single stdout handler.

    Calling it again replaces the handler rather than adding another.

    Args:
        log_format: "json" or "text"
        log_level: Level name, case-insensitive
        logger_name: Name for the logger (None for root)
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level.upper())
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
    logger.addHandler(handler)
    return logger


def configure_from_settings(settings=None) -> logging.Logger:
    """Configure the workgraph logger from Settings."""
    if settings is None:
        from workgraph.settings import get_settings
        settings = get_settings()
    return configure_logging(
        log_format=settings.log_format,
        log_level=settings.log_level,
    )


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name))
