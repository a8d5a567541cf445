"""
Savepoints that give every routed query, and every nested transaction,
its own rollback scope inside the outer transaction.
"""

from __future__ import annotations

import logging
import re
from inspect import isawaitable
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from transactional_testing.exception import (
    InvalidTransactionArgumentError,
    NoActiveTransactionError,
    TransactionChangedError,
)

from .context import ScopeContext
from .interfaces import DEFAULT_RELEASE_THRESHOLD, DEFAULT_SAVEPOINT_PREFIX
from .lock import TransactionLock

if TYPE_CHECKING:
    from .helper import TransactionalHelper

logger = logging.getLogger(__name__)

T = TypeVar("T")
IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Savepoint:
    """One named rollback point inside the outer transaction.

    A savepoint is open while the operation it guards runs. It is closed
    once that operation failed and was rolled back to it; the database
    still holds it until it, or an older savepoint, is released.
    """

    def __init__(self, name: str, sequence: int):
        self.name = name
        self.sequence = sequence
        self._closed = False

    def close(self) -> None:
        self._closed = True

    @property
    def is_closed(self) -> bool:
        return self._closed

    def __str__(self) -> str:
        status = "closed" if self._closed else "open"
        return f"<Savepoint {self.name} ({status})>"


class SavepointManager:
    def __init__(
        self,
        helper: TransactionalHelper,
        prefix: str = DEFAULT_SAVEPOINT_PREFIX,
        release_threshold: int = DEFAULT_RELEASE_THRESHOLD,
    ):
        if not IDENTIFIER.match(prefix):
            raise ValueError(
                f"Savepoint prefix {prefix!r} is not a valid SQL identifier"
            )
        if (
            isinstance(release_threshold, bool)
            or not isinstance(release_threshold, int)
            or release_threshold < 1
        ):
            raise ValueError(
                "release_threshold: must be an integer greater than 0"
            )
        self._helper = helper
        self.prefix = prefix
        self.release_threshold = release_threshold
        self._lock = TransactionLock()
        self._scope = ScopeContext()
        self._counter = 0
        # Savepoints the database still holds, oldest first
        self._established: List[Savepoint] = []

    def reset(self) -> None:
        """Start numbering from zero for a new outer transaction"""
        self._counter = 0
        self._established.clear()

    @property
    def count(self) -> int:
        return len(self._established)

    @property
    def established(self) -> Tuple[Savepoint, ...]:
        return tuple(self._established)

    @property
    def in_scope(self) -> bool:
        return self._scope.active

    @property
    def current(self) -> Optional[str]:
        return self._scope.savepoint

    @property
    def lock(self) -> TransactionLock:
        return self._lock

    async def transaction(
        self,
        args: Any,
        *,
        timeout: Optional[float] = None,
        max_wait: Optional[float] = None,
    ) -> Any:
        """
        Replacement for the client's `transaction` while an outer
        transaction is held open. Runs in a savepoint instead of a new
        transaction.

        Args:
            args: Either a list of not yet awaited queries, which are
                awaited in order and whose results are returned in order,
                or a callback receiving the transaction client.
            timeout: Accepted for compatibility, ignored.
            max_wait: Accepted for compatibility, ignored.

        Raises:
            InvalidTransactionArgumentError: If `args` is neither
        """
        if timeout is not None or max_wait is not None:
            logger.debug(
                "Ignoring timeout=%s max_wait=%s for nested transaction",
                timeout,
                max_wait,
            )

        async def run():
            if isinstance(args, (list, tuple)):
                results = []
                for query in args:
                    results.append(await query)
                return results
            elif callable(args):
                result = args(self._helper.active_client)
                if isawaitable(result):
                    result = await result
                return result
            raise InvalidTransactionArgumentError(
                "Invalid transaction call. Argument must be a list of "
                "queries or a callback function."
            )

        return await self.wrap(run)

    async def wrap(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` inside a new savepoint.

        Releases the savepoint when the operation succeeds and rolls back
        to it when the operation fails, re-raising the failure.
        Operations already running inside a savepoint skip the lock.
        """
        # Pin the client now: a query that was not awaited may still be
        # running after the outer transaction has been replaced.
        client = self._helper.active_client
        acquired = False
        if not self._scope.active:
            await self._lock.acquire()
            acquired = True

        try:
            if client is None:
                raise NoActiveTransactionError(
                    "Invalid call to transaction while no transaction "
                    "is active."
                )

            await self._release_batch(client)

            savepoint = Savepoint(
                f"{self.prefix}{self._counter}", self._counter
            )
            self._counter += 1
            await self._execute(client, f"SAVEPOINT {savepoint.name}")
            self._established.append(savepoint)

            try:
                with self._scope.enter(savepoint.name):
                    result = await operation()
            except BaseException:
                # Cancellation included
                await self._rollback_to(client, savepoint)
                raise

            await self._release(client, savepoint)
            return result
        finally:
            if acquired:
                self._lock.release()

    async def _release(self, client: Any, savepoint: Savepoint) -> None:
        await self._execute(client, f"RELEASE SAVEPOINT {savepoint.name}")
        self._discard(savepoint, keep=False)

    async def _rollback_to(self, client: Any, savepoint: Savepoint) -> None:
        await self._execute(
            client, f"ROLLBACK TO SAVEPOINT {savepoint.name}"
        )
        savepoint.close()
        self._discard(savepoint, keep=True)

    async def _release_batch(self, client: Any) -> None:
        if len(self._established) < self.release_threshold:
            return

        oldest = self._oldest_releasable()
        if oldest is None:
            logger.debug(
                "%d savepoints established and all of them are open",
                len(self._established),
            )
            return

        index = self._established.index(oldest)
        logger.debug(
            "Releasing %d savepoints starting at %s",
            len(self._established) - index,
            oldest.name,
        )
        await self._execute(client, f"RELEASE SAVEPOINT {oldest.name}")
        self._discard(oldest, keep=False)

    def _oldest_releasable(self) -> Optional[Savepoint]:
        # Releasing a savepoint also releases every later one, so only
        # savepoints newer than the newest open one are safe to release.
        start = 0
        for index, savepoint in enumerate(self._established):
            if not savepoint.is_closed:
                start = index + 1
        if start < len(self._established):
            return self._established[start]
        return None

    def _discard(self, savepoint: Savepoint, keep: bool) -> None:
        if savepoint not in self._established:
            return
        index = self._established.index(savepoint)
        del self._established[index + 1 if keep else index :]

    async def _execute(self, client: Any, sql: str) -> None:
        if self._helper.active_client is not client:
            raise TransactionChangedError(
                "The transaction changed while a savepoint was in use. "
                "Make sure every query in your test is awaited before the "
                "transaction is rolled back or a new one is started."
            )
        logger.debug(sql)
        await client.execute_raw(sql)
