from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from sqlite3 import Cursor
from typing import Any, Dict, Optional, Tuple

from transactional_testing.base.interface import BaseInterface, Params
from transactional_testing.exception import ClientError

try:
    import aiosqlite

    AIOSQLITE_ENABLED = True
except ModuleNotFoundError:
    AIOSQLITE_ENABLED = False


class SQLitePool(BaseInterface):
    """Interface for connecting to a SQLite database

    All callers share one connection. It runs with ``isolation_level=None``
    so that transactions and savepoints are only ever started explicitly.
    Callers take turns on it: a transaction keeps the connection until it
    commits or rolls back, and every other caller waits for that.
    """

    scheme = ""
    POSITIONAL_SUB = r"?"
    KEYWORD_SUB = r":\2"

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        super().__init__()

    def _setup_pool(self):
        if not AIOSQLITE_ENABLED:
            raise ClientError(
                "SQLite driver not found. Try reinstalling: "
                "pip install transactional-testing[sqlite]"
            )

    def _populate_dsn(self):
        self._dsn = self._db_path
        self._full_dsn = self._db_path

    @property
    def db_path(self) -> str:
        return self._db_path

    async def open(self):
        """Open the shared connection"""
        self._conn = await aiosqlite.connect(
            self._db_path, isolation_level=None
        )
        self._conn.row_factory = self._dict_factory

    async def close(self):
        """Close the shared connection"""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def connection(self, timeout: Optional[float] = None):
        """Obtain a connection to the database

        Args:
            timeout (float, optional): Time to wait for the connection
                to be free. Defaults to `None`.

        Raises:
            ClientError: If the connection did not become free in time

        Yields:
            aiosqlite.Connection: The shared database connection
        """
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout)
        except asyncio.TimeoutError:
            raise ClientError(
                f"SQLite connection still in use after {timeout} seconds"
            )

        close_when_done = False
        try:
            if self._conn is None:
                close_when_done = True
                await self.open()
            yield self._conn
        finally:
            try:
                if close_when_done:
                    await self.close()
            finally:
                self._lock.release()

    async def execute(
        self,
        conn: Any,
        query: str,
        params: Params = None,
        as_list: bool = False,
        no_result: bool = False,
    ):
        cursor = await conn.execute(query, params or ())
        try:
            if no_result:
                return None
            return await getattr(cursor, self._get_method(as_list))()
        finally:
            await cursor.close()

    async def begin(self, conn: Any) -> None:
        await conn.execute("BEGIN")

    async def commit(self, conn: Any) -> None:
        await conn.execute("COMMIT")

    async def rollback(self, conn: Any) -> None:
        await conn.execute("ROLLBACK")

    @staticmethod
    def _dict_factory(cursor: Cursor, row: Tuple[Any, ...]) -> Dict[str, Any]:
        return {val[0]: row[idx] for idx, val in enumerate(cursor.description)}
