"""
Keeps one transaction open for a whole test and isolates every query in
a savepoint inside it.
"""

from .context import ScopeContext
from .helper import TransactionalHelper, TransactionSession
from .interfaces import (
    DEFAULT_RELEASE_THRESHOLD,
    DEFAULT_SAVEPOINT_PREFIX,
    SessionState,
)
from .lock import TransactionLock
from .router import ClientRouter, DeferredQuery, ExecutorRouter
from .savepoint import Savepoint, SavepointManager

__all__ = [
    "TransactionalHelper",
    "TransactionSession",
    "SessionState",
    "ClientRouter",
    "ExecutorRouter",
    "DeferredQuery",
    "Savepoint",
    "SavepointManager",
    "ScopeContext",
    "TransactionLock",
    "DEFAULT_RELEASE_THRESHOLD",
    "DEFAULT_SAVEPOINT_PREFIX",
]
