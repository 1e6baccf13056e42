"""
Operation-bound logging.

Services log through stdlib ``logging`` (the same tree Flask's ``app.logger``
lives in). ``operation_logger`` binds identifiers such as ``transaction_id``
to every record so one sale, return or recompute can be followed across
modules without freeform tracing.
"""
from __future__ import annotations

import logging

ROOT_LOGGER_NAME = "creditpos"


class OperationLoggerAdapter(logging.LoggerAdapter):
    """Merges bound fields and per-call ``extra`` into ``record.context``."""

    def process(self, msg, kwargs):
        context = dict(self.extra)
        context.update(kwargs.pop("extra", None) or {})
        kwargs["extra"] = {"context": context}
        return msg, kwargs

    def bind(self, **fields) -> "OperationLoggerAdapter":
        merged = dict(self.extra)
        merged.update(fields)
        return OperationLoggerAdapter(self.logger, merged)


class ContextFormatter(logging.Formatter):
    """Appends bound fields as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        context = getattr(record, "context", None)
        if not context:
            return base
        pairs = " ".join(
            f"{key}={value}" for key, value in sorted(context.items()) if value is not None
        )
        return f"{base} [{pairs}]" if pairs else base


def operation_logger(name: str, **fields) -> OperationLoggerAdapter:
    return OperationLoggerAdapter(logging.getLogger(name), fields)


def configure_logging(app) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    if not any(isinstance(h.formatter, ContextFormatter) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(ContextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    app.logger.setLevel(level)
