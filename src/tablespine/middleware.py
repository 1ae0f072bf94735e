"""
Middleware chain - per-request interceptors around every data operation.

Manifesto:
    Cross-cutting concerns (auditing, timing, authorization, tenancy
    filters) belong in one place, not sprinkled over every model call.
    A middleware overrides only the hooks it cares about; every other
    operation passes straight through it.

    - **Global registration:** ``use_middleware()`` affects all later requests
    - **Per-request instances:** created lazily, never shared across requests
    - **Classic wrapping:** each hook gets ``call_next`` and may call it zero,
      one or many times, or short-circuit with its own result

Architecture:
    ::

        User.find(conds) ─► A.find ─► B.find ─► terminal find
                                                   │ builder.select()
                                                   ▼
                            A.query ─► B.query ─► terminal query
                                                   ▼
                        A.execute ─► B.execute ─► Database.run()

        Registration order = wrapping order (first registered is outermost).
        The ``execute`` hook sees every statement, including relation loads.

Hooks:
    =============  ==============================================
    find           (model, conditions, options, call_next)
    find_one       (model, conditions, options, call_next)
    find_by_id     (model, keys, options, call_next)
    count          (model, conditions, options, call_next)
    create         (model, values, options, call_next)
    create_many    (model, rows, options, call_next)
    update         (model, conditions, values, options, call_next)
    update_many    (model, rows, key_columns, options, call_next)
    delete         (model, conditions, options, call_next)
    query          (model, sql, params, call_next)
    execute        (model, sql, params, call_next)
    =============  ==============================================

Examples:
    >>> class TenantFilter(Middleware):
    ...     async def find(self, model, conditions, options, call_next):
    ...         conditions = [*conditions, (model.tenant_id, current_tenant())]
    ...         return await call_next(model, conditions, options)
    >>> remove = use_middleware(TenantFilter)
    >>> remove()

Guardrails:
    ❌ DON'T: Store request state on the middleware class
    ✅ DO: Store it on ``self``; each request gets a new instance

Tags:
    middleware, interceptor, chain-of-responsibility, tablespine
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from tablespine.context import current_request
from tablespine.errors import ContractError

HOOKS: tuple[str, ...] = (
    "find",
    "find_one",
    "find_by_id",
    "count",
    "create",
    "create_many",
    "update",
    "update_many",
    "delete",
    "query",
    "execute",
)

Handler = Callable[..., Awaitable[Any]]


class Middleware:
    """
    Base interceptor. Every hook delegates to ``call_next`` unchanged.

    Subclasses are instantiated once per request with no arguments.
    """

    async def find(self, model, conditions, options, call_next):
        return await call_next(model, conditions, options)

    async def find_one(self, model, conditions, options, call_next):
        return await call_next(model, conditions, options)

    async def find_by_id(self, model, keys, options, call_next):
        return await call_next(model, keys, options)

    async def count(self, model, conditions, options, call_next):
        return await call_next(model, conditions, options)

    async def create(self, model, values, options, call_next):
        return await call_next(model, values, options)

    async def create_many(self, model, rows, options, call_next):
        return await call_next(model, rows, options)

    async def update(self, model, conditions, values, options, call_next):
        return await call_next(model, conditions, values, options)

    async def update_many(self, model, rows, key_columns, options, call_next):
        return await call_next(model, rows, key_columns, options)

    async def delete(self, model, conditions, options, call_next):
        return await call_next(model, conditions, options)

    async def query(self, model, sql, params, call_next):
        return await call_next(model, sql, params)

    async def execute(self, model, sql, params, call_next):
        return await call_next(model, sql, params)


# =============================================================================
# Registry
# =============================================================================

_registry: list[type[Middleware]] = []


def use_middleware(middleware: type[Middleware]) -> Callable[[], None]:
    """Register ``middleware`` for all subsequent requests; returns a remover."""
    if not (isinstance(middleware, type) and issubclass(middleware, Middleware)):
        raise ContractError(f"{middleware!r} is not a Middleware subclass", value=middleware)
    if middleware not in _registry:
        _registry.append(middleware)

    def remove() -> None:
        remove_middleware(middleware)

    return remove


def remove_middleware(middleware: type[Middleware]) -> None:
    if middleware in _registry:
        _registry.remove(middleware)


def clear_middlewares() -> None:
    _registry.clear()


def get_middlewares() -> list[type[Middleware]]:
    """Registered middleware classes, outermost first."""
    return list(_registry)


def get_middleware_instance(middleware: type[Middleware]) -> Middleware:
    """This request's instance of ``middleware``, created on first access."""
    instances = current_request().middlewares
    instance = instances.get(middleware)
    if instance is None:
        instance = middleware()
        instances[middleware] = instance
    return instance


# =============================================================================
# Chain
# =============================================================================


def _overrides(middleware: type[Middleware], hook: str) -> bool:
    return getattr(middleware, hook) is not getattr(Middleware, hook)


def _wrap(method: Handler, downstream: Handler) -> Handler:
    async def call(*args: Any) -> Any:
        return await method(*args, downstream)

    return call


def build_chain(hook: str, terminal: Handler) -> Handler:
    """Compose the registered middlewares around ``terminal`` for one hook."""
    handler = terminal
    for middleware in reversed(_registry):
        if _overrides(middleware, hook):
            handler = _wrap(getattr(get_middleware_instance(middleware), hook), handler)
    return handler


async def dispatch(hook: str, terminal: Handler, *args: Any) -> Any:
    """Run ``terminal(*args)`` through the chain for ``hook``."""
    return await build_chain(hook, terminal)(*args)


def create_middleware(
    hooks: Mapping[str, Callable[..., Awaitable[Any]]],
    *,
    state: Any = None,
    name: str = "CustomMiddleware",
) -> type[Middleware]:
    """
    Build a middleware class from plain async functions.

    Each function takes ``self`` first; ``self.state`` is a deep copy of
    ``state`` made for every request, so requests never share it.

    Example:
        async def audit(self, model, sql, params, call_next):
            self.state["statements"].append(sql)
            return await call_next(model, sql, params)

        Audit = create_middleware({"execute": audit}, state={"statements": []})
        use_middleware(Audit)
    """
    unknown = set(hooks) - set(HOOKS)
    if unknown:
        raise ContractError(
            f"unknown middleware hooks: {sorted(unknown)}",
            field="hooks",
            value=sorted(unknown),
        )

    def __init__(self: Middleware) -> None:
        self.state = copy.deepcopy(state) if state is not None else {}

    namespace: dict[str, Any] = {"__init__": __init__, **hooks}
    return type(name, (Middleware,), namespace)


__all__ = [
    "HOOKS",
    "Middleware",
    "use_middleware",
    "remove_middleware",
    "clear_middlewares",
    "get_middlewares",
    "get_middleware_instance",
    "build_chain",
    "dispatch",
    "create_middleware",
]
