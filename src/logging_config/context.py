"""Trace Context Management.

Context-local binding of correlation, trader and subscription ids
so that every log line emitted while processing a leader trade or an
analysis run carries the ids it concerns.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any


_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
_trader_id_var: ContextVar[str] = ContextVar("trader_id", default="")
_subscription_id_var: ContextVar[str] = ContextVar("subscription_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_correlation_id() -> str:
    """Generate a unique correlation ID using UUID4."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_trader_id() -> str:
    return _trader_id_var.get()


def get_subscription_id() -> str:
    return _subscription_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all bound context values as a dictionary for log binding."""
    ctx = {}
    corr_id = _correlation_id_var.get()
    if corr_id:
        ctx["correlation_id"] = corr_id
    trader_id = _trader_id_var.get()
    if trader_id:
        ctx["trader_id"] = trader_id
    subscription_id = _subscription_id_var.get()
    if subscription_id:
        ctx["subscription_id"] = subscription_id
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class TraceContext:
    """Context manager for scoped logging context.

    Nested contexts inherit the outer values they do not override and
    restore them on exit, so a per-subscription context inside a
    per-trade context keeps the trade's correlation id.

    Example:
        with TraceContext(trader_id="leader_1"):
            with TraceContext(subscription_id="sub_9"):
                logger.info("copy trade skipped")  # carries both ids
    """

    correlation_id: str = ""
    trader_id: str = ""
    subscription_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.correlation_id:
            self.correlation_id = get_correlation_id() or generate_correlation_id()

    def __enter__(self) -> "TraceContext":
        self._tokens = [
            (_correlation_id_var, _correlation_id_var.set(self.correlation_id)),
            (_trader_id_var, _trader_id_var.set(self.trader_id or get_trader_id())),
            (
                _subscription_id_var,
                _subscription_id_var.set(self.subscription_id or get_subscription_id()),
            ),
            (
                _extra_context_var,
                _extra_context_var.set({**_extra_context_var.get(), **self.extra}),
            ),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the active context."""
        _extra_context_var.set({**_extra_context_var.get(), **kwargs})
        self.extra.update(kwargs)

