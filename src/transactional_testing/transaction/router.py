"""
Routing handles given to application code. They forward every attribute
to the client bound to the open outer transaction, falling back to the
original client, and defer data-access calls so they run in savepoints.
"""

from __future__ import annotations

import asyncio
from inspect import iscoroutinefunction
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from transactional_testing.base.executor import Executor

if TYPE_CHECKING:
    from .helper import TransactionalHelper
    from .savepoint import SavepointManager

_MISSING = object()


class DeferredQuery:
    """
    Result of calling a routed data-access method. Nothing runs until it
    is awaited. Awaiting runs the call directly when already inside a
    savepoint, and otherwise in a savepoint of its own.

    Once started it is backed by an `asyncio.Task`, so awaiting it again
    returns the same result.
    """

    __slots__ = (
        "_savepoints",
        "_func",
        "_args",
        "_kwargs",
        "_future",
        "_callbacks",
    )

    def __init__(
        self,
        savepoints: SavepointManager,
        func: Callable[..., Any],
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
    ) -> None:
        self._savepoints = savepoints
        self._func = func
        self._args = args
        self._kwargs = kwargs
        self._future: Optional[asyncio.Future] = None
        self._callbacks: List[Callable[[asyncio.Future], Any]] = []

    def __repr__(self) -> str:
        name = getattr(self._func, "__qualname__", repr(self._func))
        if self._future is None:
            status = "pending"
        elif self._future.done():
            status = "done"
        else:
            status = "running"
        return f"<DeferredQuery {name} ({status})>"

    def __await__(self):
        return self._start().__await__()

    def add_done_callback(self, fn: Callable[[asyncio.Future], Any]) -> None:
        """Call `fn` with the underlying future once the query finished.
        Does not start the query."""
        if self._future is None:
            self._callbacks.append(fn)
        else:
            self._future.add_done_callback(fn)

    @property
    def started(self) -> bool:
        return self._future is not None

    def _start(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.ensure_future(self._run())
            for fn in self._callbacks:
                self._future.add_done_callback(fn)
            self._callbacks.clear()
        return self._future

    async def _run(self):
        if self._savepoints.in_scope:
            return await self._func(*self._args, **self._kwargs)
        return await self._savepoints.wrap(
            lambda: self._func(*self._args, **self._kwargs)
        )


def _defer(savepoints: SavepointManager, func: Callable[..., Any]):
    def deferred(*args: Any, **kwargs: Any) -> DeferredQuery:
        return DeferredQuery(savepoints, func, args, kwargs)

    deferred.__name__ = getattr(func, "__name__", "deferred")
    deferred.__qualname__ = getattr(func, "__qualname__", deferred.__name__)
    deferred.__doc__ = getattr(func, "__doc__", None)
    return deferred


class ExecutorRouter:
    """Wraps one executor of the transaction client so each of its
    coroutine methods returns a `DeferredQuery`."""

    __slots__ = ("_router_executor", "_router_savepoints")

    def __init__(self, executor: Executor, savepoints: SavepointManager):
        self._router_executor = executor
        self._router_savepoints = savepoints

    def __getattr__(self, name: str) -> Any:
        value = getattr(self._router_executor, name)
        if name.startswith("_") or not iscoroutinefunction(value):
            return value
        return _defer(self._router_savepoints, value)

    def __repr__(self) -> str:
        return f"<ExecutorRouter {self._router_executor!r}>"


class ClientRouter:
    """
    Stable stand-in for the original client. Fetch it once and use it
    exactly like the client; every attribute lookup is resolved against
    whichever transaction is open at that moment.
    """

    __slots__ = ("_router_helper", "_router_original", "_router_savepoints")

    def __init__(
        self,
        helper: TransactionalHelper,
        original: Any,
        savepoints: SavepointManager,
    ) -> None:
        self._router_helper = helper
        self._router_original = original
        self._router_savepoints = savepoints

    def __getattr__(self, name: str) -> Any:
        original = self._router_original

        if not self._router_helper.session_open:
            return getattr(original, name)

        if _is_frozen(original, name):
            return getattr(original, name)

        if name == "transaction":
            return self._router_savepoints.transaction

        # A session whose transaction already ended keeps routing through
        # savepoints, which refuse to run without a transaction.
        active = self._router_helper.active_client
        if active is None:
            active = original

        value = getattr(active, name, _MISSING)
        if value is not _MISSING and value is not None:
            if isinstance(value, Executor):
                return ExecutorRouter(value, self._router_savepoints)
            if not name.startswith("_") and iscoroutinefunction(value):
                return _defer(self._router_savepoints, value)
            return value

        return getattr(original, name)

    def __repr__(self) -> str:
        return f"<ClientRouter {self._router_original!r}>"


def _is_frozen(original: Any, name: str) -> bool:
    """Read-only properties are fixed when the original client is built
    and always come from it."""
    attribute = getattr(type(original), name, None)
    return isinstance(attribute, property) and attribute.fset is None
