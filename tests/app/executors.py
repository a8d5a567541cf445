import asyncio
from typing import List, Optional

from transactional_testing import Executor, query

from .model import User


class UserExecutor(Executor):
    @query(
        """
        INSERT INTO users (user_id, name, email)
        VALUES ($user_id, $name, $email)
        """
    )
    async def insert_user(self, user_id: int, name: str, email: str) -> None:
        ...

    @query("SELECT * FROM users WHERE user_id = $user_id")
    async def select_user(self, user_id: int) -> User:
        ...

    @query("SELECT * FROM users WHERE user_id = $user_id")
    async def select_optional_user(self, user_id: int) -> Optional[User]:
        ...

    @query("SELECT * FROM users ORDER BY user_id")
    async def select_users(self) -> List[User]:
        ...

    @query("SELECT COUNT(*) AS count FROM users")
    async def count_users(self) -> int:
        ...

    @query("SELECT * FROM users WHERE user_id = $1")
    async def select_user_positional(self, user_id: int) -> User:
        ...

    async def rename_user(self, user_id: int, name: str) -> None:
        await self.execute(
            "UPDATE users SET name = $name WHERE user_id = $user_id",
            params={"user_id": user_id, "name": name},
        )


class RecorderExecutor(Executor):
    """Records calls on its client instead of talking to a database"""

    name = "recorder"

    async def run(self, label, gate=None, fail=None):
        self.client.statements.append(f"run {label}")
        await asyncio.sleep(0)
        if gate is not None:
            await gate.wait()
        if fail is not None:
            raise fail
        return label

    def describe(self):
        return "recorder"
