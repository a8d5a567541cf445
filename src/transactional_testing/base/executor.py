from __future__ import annotations

import re
from functools import wraps
from inspect import Parameter, isawaitable, signature
from types import UnionType
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Optional,
    Sequence,
    Type,
    Union,
    get_args,
    get_origin,
)

from transactional_testing.convert import uses_keyword_params
from transactional_testing.exception import ClientError, RecordNotFound
from transactional_testing.hydrator import Hydrator

if TYPE_CHECKING:
    from transactional_testing.client import BaseClient

CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class Executor:
    """
    Base class for per-entity accessors. An executor is attached to a
    client as an attribute and runs its queries through that client, so
    the same executor class works against the plain client and against a
    client bound to an open transaction.

    Example:

    ```python
    class UserExecutor(Executor):
        @query("SELECT * FROM users WHERE user_id = $user_id")
        async def select_user(self, user_id: int) -> User:
            ...

    client = Client(executors=[UserExecutor], db_path="app.db")
    user = await client.user.select_user(user_id=1)
    ```
    """

    name: str = ""
    """`str`: Attribute name on the client. Defaults to the snake case
    class name without the `Executor` suffix."""

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        for attr, func in list(vars(cls).items()):
            if hasattr(func, "__query__"):
                setattr(cls, attr, cls._setup(func))

    def __init__(
        self, client: BaseClient, hydrator: Optional[Hydrator] = None
    ) -> None:
        self._client = client
        self._hydrator = hydrator

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} client={self._client!r}>"

    @classmethod
    def attribute_name(cls) -> str:
        if cls.name:
            return cls.name
        base = cls.__name__
        if base.endswith("Executor") and base != "Executor":
            base = base[: -len("Executor")]
        return CAMEL_BOUNDARY.sub("_", base).lower()

    @property
    def hydrator(self) -> Hydrator:
        """The assigned hydrator, falling back to the client's.

        Returns:
            Hydrator: The hydrator
        """
        if self._hydrator:
            return self._hydrator
        return self._client.hydrator

    @property
    def client(self) -> BaseClient:
        return self._client

    async def execute(
        self,
        query: str,
        name: str = "",
        model: Optional[Type[object]] = None,
        as_list: bool = False,
        allow_none: bool = False,
        posargs: Optional[Sequence[Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        """Low-level API to execute a query and hydrate the results

        Args:
            query (str): The query to be executed
            name (str, optional): The name of the query, used in error
                messages. Defaults to `""`.
            model (Type[object], optional): The model to be used
                for hydration. `None` means no result is fetched.
                Defaults to `None`.
            as_list (bool, optional): Whether to return the results as a
                list of hydrated objects. Defaults to `False`.
            allow_none (bool, optional): Whether `None` is an acceptable
                return value. Defaults to `False`.
            posargs (Sequence[Any], optional): Positional arguments.
                Defaults to `None`.
            params (Dict[str, Any], optional): Keyword arguments.
                Defaults to `None`.

        Raises:
            RecordNotFound: If a single row was expected and none came back
        """
        no_result = model in (None, Parameter.empty)
        raw = await self.run_sql(
            query,
            as_list=as_list,
            no_result=no_result,
            posargs=posargs,
            params=params,
        )
        if no_result:
            return None
        if not raw:
            if allow_none:
                return None
            if as_list:
                return []
            query_name = f"<{name}> " if name else ""
            raise RecordNotFound(
                f"Query {query_name}did not find any record using "
                f"{posargs or ()} and {params or {}}"
            )
        results = self.hydrator._make(model)(raw)
        if isawaitable(results):
            results = await results
        return results

    async def run_sql(
        self,
        query: str,
        as_list: bool = False,
        no_result: bool = False,
        posargs: Optional[Sequence[Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        """Low-level API to execute a query and return the raw rows

        Args:
            query (str): The query to be executed, using `$name` or `$1`
                style parameters
            as_list (bool, optional): Whether to fetch all rows.
                Defaults to `False`.
            no_result (bool, optional): Whether to skip fetching.
                Defaults to `False`.
            posargs (Sequence[Any], optional): Positional arguments.
                Defaults to `None`.
            params (Dict[str, Any], optional): Keyword arguments.
                Defaults to `None`.
        """
        return await self._client._run(
            query,
            as_list=as_list,
            no_result=no_result,
            posargs=posargs,
            params=params,
        )

    @staticmethod
    def _setup(func):
        """
        Responsible for executing the query attached by the `query`
        decorator and passing the result off to the hydrator.
        """
        sig = signature(func)
        text = func.__query__
        model = sig.return_annotation
        as_list = False
        allow_none = False
        name = func.__name__

        if model is not None and (origin := get_origin(model)):
            check_model = True
            if origin is UnionType or origin is Union:
                args = get_args(model)
                allow_none = True
                none_type = type(None)
                if len(args) == 2 and any(arg is none_type for arg in args):
                    model = args[0] if args[1] is none_type else args[1]
                    origin = get_origin(model)
                    if not origin:
                        check_model = False

            if check_model:
                as_list = bool(origin is list)
                as_dict = bool(origin is dict)
                if as_list:
                    model = get_args(model)[0]
                elif as_dict:
                    model = dict
                else:
                    raise ClientError(
                        f"{func} must return either a model or a list of "
                        "models. eg. -> Foo or List[Foo]"
                    )

        keyword = uses_keyword_params(text)

        @wraps(func)
        async def decorated_function(self: Executor, *args, **kwargs):
            bound = sig.bind(self, *args, **kwargs)
            bound.apply_defaults()
            arguments = {**bound.arguments}
            arguments.pop("self", None)
            return await self.execute(
                text,
                name=name,
                model=model,
                as_list=as_list,
                allow_none=allow_none,
                posargs=None if keyword else list(arguments.values()),
                params=arguments if keyword else None,
            )

        return decorated_function
