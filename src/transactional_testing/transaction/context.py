from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional


class ScopeContext:
    """Marks the running call chain as being inside a savepoint.

    Backed by a `ContextVar`, so the marker is seen by everything awaited
    from inside `enter()` and by tasks created there, but never by
    unrelated tasks sharing the same event loop.
    """

    def __init__(self, name: str = "transaction_savepoint") -> None:
        self._savepoint: ContextVar[Optional[str]] = ContextVar(
            name, default=None
        )

    @property
    def savepoint(self) -> Optional[str]:
        return self._savepoint.get()

    @property
    def active(self) -> bool:
        return self._savepoint.get() is not None

    @contextmanager
    def enter(self, savepoint_name: str) -> Iterator[None]:
        token = self._savepoint.set(savepoint_name)
        try:
            yield
        finally:
            self._savepoint.reset(token)
