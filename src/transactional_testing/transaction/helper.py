from __future__ import annotations

import asyncio
import logging
from typing import Any, Generic, Optional, TypeVar

from transactional_testing.exception import (
    AlreadyActiveError,
    NoActiveTransactionError,
)

from .interfaces import (
    DEFAULT_RELEASE_THRESHOLD,
    DEFAULT_SAVEPOINT_PREFIX,
    SessionState,
)
from .router import ClientRouter
from .savepoint import SavepointManager

logger = logging.getLogger(__name__)

C = TypeVar("C")


class _RollbackSignal(Exception):
    """Raised from inside the outer transaction to make the client roll
    it back instead of committing it."""


class TransactionSession:
    """The outer transaction held open between
    `start_new_transaction` and `rollback_current_transaction`."""

    def __init__(self, end_signal: asyncio.Future):
        self.end_signal = end_signal
        self.client: Optional[Any] = None
        self.holder: Optional[asyncio.Task] = None
        self.state = SessionState.OPENING

    def end(self) -> None:
        if not self.end_signal.done():
            self.end_signal.set_result(None)
        if self.holder is not None and not self.holder.done():
            self.state = SessionState.ROLLING_BACK
        self.client = None


class TransactionalHelper(Generic[C]):
    """
    Keeps one database transaction open per test and gives every query
    issued through the proxy client its own savepoint inside it, so each
    test starts from the same seeded state without reseeding.

    Example:

    ```python
    helper = TransactionalHelper(client)
    db = helper.get_proxy_client()

    async def test_something():
        await helper.start_new_transaction()
        try:
            await db.user.insert_user(name="alice")
        finally:
            await helper.rollback_current_transaction()
    ```

    Does not support more than one outer transaction at a time; create
    one helper per client if you need that.
    """

    def __init__(
        self,
        client: C,
        *,
        savepoint_prefix: str = DEFAULT_SAVEPOINT_PREFIX,
        release_threshold: int = DEFAULT_RELEASE_THRESHOLD,
    ) -> None:
        """
        Args:
            client: The original client. Every attribute the transaction
                client does not have is read from it.
            savepoint_prefix (str, optional): Prefix of every savepoint
                name. Defaults to `"transactional_testing_"`.
            release_threshold (int, optional): Number of established
                savepoints at which the oldest finished ones are released
                in one go. Defaults to `56`.
        """
        self._client = client
        self._session: Optional[TransactionSession] = None
        self._closing: Optional[asyncio.Task] = None
        self._savepoints = SavepointManager(
            self, savepoint_prefix, release_threshold
        )
        self._proxy = ClientRouter(self, client, self._savepoints)

    @property
    def client(self) -> C:
        return self._client

    @property
    def active_client(self) -> Optional[Any]:
        """The transaction client queries are currently routed to"""
        if self._session is None:
            return None
        return self._session.client

    @property
    def state(self) -> SessionState:
        if self._session is not None:
            return self._session.state
        if self._closing is not None and not self._closing.done():
            return SessionState.ROLLING_BACK
        return SessionState.IDLE

    @property
    def in_transaction(self) -> bool:
        return self.active_client is not None

    @property
    def session_open(self) -> bool:
        """Whether a session was started and not yet rolled back, even if
        its transaction already ended on its own"""
        return self._session is not None

    @property
    def savepoint_count(self) -> int:
        return self._savepoints.count

    @property
    def savepoints(self) -> SavepointManager:
        return self._savepoints

    def get_proxy_client(self) -> C:
        """
        Returns a client that always routes queries to the current
        outer transaction, and everything else to the original client.
        It stays valid across transactions, fetch it once.
        """
        return self._proxy  # type: ignore

    async def start_new_transaction(
        self,
        timeout: Optional[float] = None,
        max_wait: Optional[float] = None,
    ) -> None:
        """
        Starts a new outer transaction and routes the proxy client to it.
        Must be called before each test. Returns once the transaction
        is open.

        Args:
            timeout (float, optional): Passed to the client's
                `transaction`; the longest the outer transaction may stay
                open. Defaults to `None`.
            max_wait (float, optional): Passed to the client's
                `transaction`; the longest to wait for a connection.
                Defaults to `None`.

        Raises:
            AlreadyActiveError: If `rollback_current_transaction` was not
                called for the previous transaction
        """
        if self._session is not None:
            raise AlreadyActiveError(
                "rollback_current_transaction must be called before "
                "starting a new transaction"
            )

        await self._wait_closed()
        if self._session is not None:
            raise AlreadyActiveError(
                "Another transaction was started while waiting for the "
                "previous one to roll back"
            )

        self._savepoints.reset()
        loop = asyncio.get_running_loop()
        opened = loop.create_future()
        session = TransactionSession(loop.create_future())
        self._session = session
        session.holder = loop.create_task(
            self._hold(session, opened, timeout, max_wait)
        )
        try:
            await opened
        except BaseException:
            session.end()
            if self._session is session:
                self._session = None
                self._closing = session.holder
            raise
        logger.info("Outer transaction open")

    def rollback_current_transaction(self) -> asyncio.Task:
        """
        Ends the current outer transaction by rolling it back. Must be
        called after each test. The proxy client is routed to the
        original client immediately; the original client only gets the
        connection back once the rollback went through.

        Raises:
            NoActiveTransactionError: If no transaction is active

        Returns:
            asyncio.Task: Finishes once the rollback went through. Awaiting
            it is optional; `start_new_transaction` waits for it too.
        """
        session = self._session
        if session is None:
            raise NoActiveTransactionError("No transaction currently active")

        session.end()
        self._session = None
        self._closing = session.holder
        return session.holder  # type: ignore

    async def _hold(
        self,
        session: TransactionSession,
        opened: asyncio.Future,
        timeout: Optional[float],
        max_wait: Optional[float],
    ) -> None:
        async def hold_open(transaction_client):
            session.client = transaction_client
            session.state = SessionState.OPEN
            if not opened.done():
                opened.set_result(None)
            await session.end_signal
            # Always roll back, whatever happened during the test
            raise _RollbackSignal()

        try:
            await self._client.transaction(  # type: ignore
                hold_open, timeout=timeout, max_wait=max_wait
            )
        except _RollbackSignal:
            logger.info("Outer transaction rolled back")
        except Exception as e:
            if not opened.done():
                opened.set_exception(e)
                return
            logger.error("Outer transaction failed: %s", e)
            raise
        finally:
            session.client = None
            session.state = SessionState.IDLE

    async def _wait_closed(self) -> None:
        closing = self._closing
        if closing is None:
            return
        if not closing.done():
            await asyncio.wait([closing])
        self._closing = None
        if not closing.cancelled():
            # Failures were logged by the holder when they happened
            closing.exception()
