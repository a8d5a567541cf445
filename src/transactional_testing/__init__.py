from importlib.metadata import version

from .base.executor import Executor
from .base.interface import BaseInterface
from .client import Client, TransactionClient
from .decorator import query
from .hydrator import Hydrator
from .sql.postgres.interface import PostgresPool
from .sql.sqlite.interface import SQLitePool
from .transaction import TransactionalHelper

__version__ = version("transactional-testing")

__all__ = (
    "query",
    "BaseInterface",
    "Client",
    "Executor",
    "Hydrator",
    "PostgresPool",
    "SQLitePool",
    "TransactionClient",
    "TransactionalHelper",
)
