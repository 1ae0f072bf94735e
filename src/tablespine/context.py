"""
Request-scoped state.

A :class:`RequestContext` holds what must not leak between concurrently
running requests: the per-request middleware instances and the
writer-sticky deadline of each logical database. It lives in a
:class:`contextvars.ContextVar`, so every asyncio task sees the context
of the request that spawned it.

Examples:
    >>> async with request_scope():
    ...     await User.find([(User.active, True)])   # fresh middleware instances

    >>> with request_scope() as ctx:
    ...     ctx.middlewares
    {}

Guardrails:
    ❌ DON'T: Keep per-request state in module globals or class attributes
    ✅ DO: Hang it off ``current_request()``

Tags:
    context, contextvars, request-scope, tablespine
"""

from __future__ import annotations

import time
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RequestContext:
    """State of one logical request."""

    # middleware class -> instance created for this request
    middlewares: dict[type, Any] = field(default_factory=dict)
    # database name -> monotonic deadline of its writer-sticky window
    sticky_until: dict[str, float] = field(default_factory=dict)

    def mark_sticky(self, database: str, duration_ms: int) -> None:
        self.sticky_until[database] = time.monotonic() + duration_ms / 1000.0

    def is_sticky(self, database: str) -> bool:
        deadline = self.sticky_until.get(database)
        if deadline is None:
            return False
        if time.monotonic() >= deadline:
            del self.sticky_until[database]
            return False
        return True


_request: ContextVar[RequestContext | None] = ContextVar("tablespine_request", default=None)


def current_request() -> RequestContext:
    """The active request context, created on first access."""
    ctx = _request.get()
    if ctx is None:
        ctx = RequestContext()
        _request.set(ctx)
    return ctx


class RequestScope:
    """Context manager that installs a fresh :class:`RequestContext`."""

    def __init__(self):
        self.context: RequestContext | None = None
        self._token: Token | None = None

    def __enter__(self) -> RequestContext:
        self.context = RequestContext()
        self._token = _request.set(self.context)
        return self.context

    def __exit__(self, *args: Any) -> None:
        _request.reset(self._token)
        self._token = None

    async def __aenter__(self) -> RequestContext:
        return self.__enter__()

    async def __aexit__(self, *args: Any) -> None:
        self.__exit__(*args)


def request_scope() -> RequestScope:
    """Open a new request boundary (sync or async ``with``)."""
    return RequestScope()


__all__ = [
    "RequestContext",
    "RequestScope",
    "current_request",
    "request_scope",
]
