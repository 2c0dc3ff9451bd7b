"""Explicit, immutable propagation context.

A ``Context`` is a plain value: it holds the parent span context and the
baggage for whatever work happens next. Code passes it along as an argument;
nothing in the tracer reads it from ambient state.

Frameworks that need implicit propagation can use ``attach``/``detach``/
``get_current`` as an adapter around their own request lifecycle.
"""

from __future__ import annotations

import functools
from contextvars import ContextVar, Token
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, TypeVar, TYPE_CHECKING

from spanline.context.baggage import EMPTY_BAGGAGE, Baggage

if TYPE_CHECKING:
    from spanline.tracer.span_context import SpanContext

T = TypeVar("T")


@dataclass(frozen=True)
class Context:
    span_context: Optional[SpanContext] = None
    baggage: Baggage = field(default=EMPTY_BAGGAGE)

    @property
    def is_empty(self) -> bool:
        return self.span_context is None and not self.baggage

    def has_valid_parent(self) -> bool:
        return self.span_context is not None and self.span_context.is_valid()

    def with_span_context(self, span_context: Optional[SpanContext]) -> "Context":
        return replace(self, span_context=span_context)

    def with_baggage(self, baggage: Baggage) -> "Context":
        return replace(self, baggage=baggage)

    def set_baggage(self, key: str, value: str, metadata: Optional[str] = None) -> "Context":
        return self.with_baggage(self.baggage.set(key, value, metadata))

    def get_baggage(self, key: str) -> Optional[str]:
        return self.baggage.get(key)

    def remove_baggage(self, key: str) -> "Context":
        return self.with_baggage(self.baggage.remove(key))


EMPTY_CONTEXT = Context()


def bind(context: Context, fn: Callable[..., T]) -> Callable[..., T]:
    """
    Capture ``context`` now and hand it to ``fn`` when it runs later.

    Use for timers, executors and thread targets: the deferred callable is
    invoked as ``fn(context, *args, **kwargs)``, so spans it starts attach to
    the trace that scheduled it instead of becoming new roots.
    """

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        return fn(context, *args, **kwargs)

    return wrapper


# Adapter for frameworks that want implicit propagation.
_current_context: ContextVar[Context] = ContextVar("spanline_current_context", default=EMPTY_CONTEXT)


def get_current() -> Context:
    """Return the context attached by ``attach`` in this task/thread, if any."""
    return _current_context.get()


def attach(context: Context) -> Token:
    """
    Make ``context`` the current one for this task/thread.

    Returns:
        Token needed to restore the previous state
    """
    return _current_context.set(context)


def detach(token: Token) -> None:
    """
    Restore the context that was current before ``attach``.

    Args:
        token: Token returned by attach()
    """
    _current_context.reset(token)
