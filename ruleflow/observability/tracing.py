"""Trace ID propagation across a trigger's processing."""

import uuid
from contextvars import ContextVar, Token
from typing import Any, Mapping

import structlog

_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def new_trace_id() -> str:
    return uuid.uuid4().hex[:16]


def current_trace_id() -> str:
    """Trace ID of the enclosing :class:`TraceContext`, or an empty string."""
    return _trace_id.get()


class TraceContext:
    """Scope a trace ID, plus optional log fields, to a block.

    Every log line emitted inside the block carries ``trace_id`` and the
    extra fields. Leaving the block restores whatever was bound before, so
    nested traces unwind cleanly.
    """

    def __init__(self, trace_id: str | None = None, **fields: Any):
        self.trace_id = trace_id or new_trace_id()
        self._fields = {"trace_id": self.trace_id, **fields}
        self._token: Token[str] | None = None
        self._log_tokens: Mapping[str, Token[Any]] = {}

    def __enter__(self) -> str:
        self._token = _trace_id.set(self.trace_id)
        self._log_tokens = structlog.contextvars.bind_contextvars(**self._fields)
        return self.trace_id

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._log_tokens)
        if self._token is not None:
            _trace_id.reset(self._token)
            self._token = None
