from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Set, Type, Union
from urllib.parse import urlparse

from transactional_testing.exception import ClientError

Params = Optional[Union[Sequence[Any], Dict[str, Any]]]


class BaseInterface(ABC):
    """Connection pool for one database, plus the dialect specific
    pieces the client needs to run statements and control transactions.
    """

    scheme = "dummy"
    default_port: Optional[int] = None
    POSITIONAL_SUB: str = r"%s"
    KEYWORD_SUB: str = r"%(\2)s"
    registered_interfaces: Set[Type[BaseInterface]] = set()

    def __init_subclass__(cls) -> None:
        BaseInterface.registered_interfaces.add(cls)

    @abstractmethod
    def _setup_pool(self): ...

    @abstractmethod
    async def open(self): ...

    @abstractmethod
    async def close(self): ...

    @abstractmethod
    def connection(self, timeout: Optional[float] = None): ...

    @abstractmethod
    async def execute(
        self,
        conn: Any,
        query: str,
        params: Params = None,
        as_list: bool = False,
        no_result: bool = False,
    ) -> Union[None, Dict[str, Any], List[Dict[str, Any]]]: ...

    @abstractmethod
    async def begin(self, conn: Any) -> None: ...

    @abstractmethod
    async def commit(self, conn: Any) -> None: ...

    @abstractmethod
    async def rollback(self, conn: Any) -> None: ...

    def __init__(
        self,
        dsn: Optional[str] = None,
        min_size: int = 1,
        max_size: Optional[int] = None,
    ) -> None:
        """DB class initialization.

        Args:
            dsn (str, optional): DB data source name. The connection
                properties are parsed from it. Defaults to `None`.
            min_size (int, optional): Minimum number of connections in
                pool. Defaults to `1`.
            max_size (int, optional): Maximum number of connections in
                pool. Defaults to `None`.

        Raises:
            ClientError: If the DSN carries an invalid port
        """
        self._source = dsn or ""
        self._min_size = min_size
        self._max_size = max_size
        self._host: Optional[str] = None
        self._port: Optional[int] = None
        self._user: Optional[str] = None
        self._password: Optional[str] = None
        self._db: Optional[str] = None
        self._query = ""
        self._dsn: Optional[str] = None
        self._full_dsn: Optional[str] = None

        self._populate_connection_args()
        self._populate_dsn()
        self._setup_pool()

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.dsn}>"

    def _populate_connection_args(self):
        if not self._source:
            return
        parts = urlparse(self._source)
        try:
            port = parts.port
        except ValueError as e:
            raise ClientError(f"Invalid port in DSN: {e}") from e
        self._host = parts.hostname or "localhost"
        self._port = port or self.default_port
        self._user = parts.username
        self._password = parts.password
        self._db = parts.path.lstrip("/") or None
        self._query = parts.query

    def _populate_dsn(self):
        if not self._source:
            return
        location = self.host
        if self.port:
            location += f":{self.port}"
        location += f"/{self.db or ''}"
        user = self.user or ""
        if self.password:
            self._dsn = f"{self.scheme}://{user}:...@{location}"
            self._full_dsn = (
                f"{self.scheme}://{user}:{self.password}@{location}"
            )
        else:
            auth = f"{user}@" if user else ""
            self._dsn = f"{self.scheme}://{auth}{location}"
            self._full_dsn = self._dsn
        if self._query:
            self._full_dsn += f"?{self._query}"

    @property
    def dsn(self):
        return self._dsn

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port

    @property
    def user(self):
        return self._user

    @property
    def password(self):
        return self._password

    @property
    def db(self):
        return self._db

    @property
    def full_dsn(self):
        return self._full_dsn

    @property
    def min_size(self):
        return self._min_size

    @property
    def max_size(self):
        return self._max_size

    @staticmethod
    def _get_method(as_list: bool) -> str:
        return "fetchall" if as_list else "fetchone"
