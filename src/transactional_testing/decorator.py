from inspect import cleandoc


def query(query: str):
    """Convenience decorator to supply a query to an executor method.
    The method body is never run; calling the method executes the query
    with the call's arguments and hydrates the result using the return
    annotation.

    Example:

    ```python
    from transactional_testing import Executor, query

    class UserExecutor(Executor):
        @query(
            '''
            SELECT *
            FROM users
            WHERE user_id = $user_id;
            '''
        )
        async def select_user(self, user_id: int) -> User:
            ...
    ```

    Args:
        query (str): The query
    """

    def decorator(f):
        f.__query__ = cleandoc(query)
        return f

    return decorator
