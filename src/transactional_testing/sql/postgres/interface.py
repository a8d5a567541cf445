from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from transactional_testing.base.interface import BaseInterface, Params
from transactional_testing.exception import ClientError

try:
    from psycopg import AsyncConnection
    from psycopg.rows import dict_row
    from psycopg_pool import AsyncConnectionPool

    POSTGRES_ENABLED = True
except ModuleNotFoundError:
    POSTGRES_ENABLED = False
    AsyncConnection = type("Connection", (), {})  # type: ignore
    AsyncConnectionPool = type("Connection", (), {})  # type: ignore


class PostgresPool(BaseInterface):
    """Interface for connecting to a Postgres database"""

    scheme = "postgres"
    default_port = 5432

    def _setup_pool(self):
        if not POSTGRES_ENABLED:
            raise ClientError(
                "Postgres driver not found. Try reinstalling: "
                "pip install transactional-testing[postgres]"
            )
        if not self.full_dsn:
            raise ClientError("PostgresPool requires a dsn")
        self._pool = AsyncConnectionPool(
            self.full_dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            open=False,
        )

    async def open(self):
        """Open connections to the pool"""
        await self._pool.open()

    async def close(self):
        """Close connections to the pool"""
        await self._pool.close()

    @asynccontextmanager
    async def connection(
        self, timeout: Optional[float] = None
    ) -> AsyncIterator[AsyncConnection]:
        """Obtain a connection to the database

        Args:
            timeout (float, optional): Time before an error is raised on
                failure to connect. Defaults to `None`.

        Yields:
            AsyncConnection: A database connection
        """
        async with self._pool.connection(timeout=timeout) as conn:
            yield conn

    async def execute(
        self,
        conn: Any,
        query: str,
        params: Params = None,
        as_list: bool = False,
        no_result: bool = False,
    ):
        cursor = await conn.execute(query, params)
        if no_result:
            return None
        cursor.row_factory = dict_row
        return await getattr(cursor, self._get_method(as_list))()

    async def begin(self, conn: Any) -> None:
        # psycopg opens the transaction implicitly on the first statement
        ...

    async def commit(self, conn: Any) -> None:
        await conn.commit()

    async def rollback(self, conn: Any) -> None:
        await conn.rollback()
