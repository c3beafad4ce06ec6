import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Literal

from opentelemetry import trace

from .config import ServiceSettings


_PLACEHOLDER = "-"
_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | trace_id=%(trace_id)s span_id=%(span_id)s "
    "tenant=%(tenant_id)s | %(message)s"
)

_CURRENT_TENANT: ContextVar[str | None] = ContextVar("tenantpay_current_tenant", default=None)


def _format_trace_id(value: int, length: int) -> str:
    return format(value, f"0{length}x")


@contextmanager
def tenant_context(tenant_id: int | str | None) -> Iterator[None]:
    """Tag log records emitted inside the block with ``tenant_id``."""

    token = _CURRENT_TENANT.set(None if tenant_id is None else str(tenant_id))
    try:
        yield
    finally:
        _CURRENT_TENANT.reset(token)


def current_tenant() -> str | None:
    return _CURRENT_TENANT.get()


class TraceContextFilter(logging.Filter):
    """Populate trace/span identifiers and the active tenant on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant_id = _CURRENT_TENANT.get() or _PLACEHOLDER

        span = trace.get_current_span()
        span_context = span.get_span_context() if span is not None else None
        if span_context is not None and span_context.is_valid:
            record.trace_id = _format_trace_id(span_context.trace_id, 32)
            record.span_id = _format_trace_id(span_context.span_id, 16)
        else:
            record.trace_id = _PLACEHOLDER
            record.span_id = _PLACEHOLDER
        return True


def configure_logging(settings: ServiceSettings) -> None:
    """Configure root logging level and format."""

    logging_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = settings.log_level
    logging.basicConfig(level=logging_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    existing_filter = next(
        (f for f in root_logger.filters if isinstance(f, TraceContextFilter)),
        None,
    )
    context_filter = existing_filter or TraceContextFilter()
    if existing_filter is None:
        root_logger.addFilter(context_filter)
    for handler in root_logger.handlers:
        if not any(isinstance(f, TraceContextFilter) for f in handler.filters):
            handler.addFilter(context_filter)
