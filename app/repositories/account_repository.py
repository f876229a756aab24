"""
Email account and user storage.

The pipeline only depends on the protocols; the in-memory implementations
back the workers in tests and local runs.
"""

import asyncio
from typing import Protocol

from app.models.domain.email_domain import EmailAccount
from app.models.domain.user_domain import User


class EmailAccountRepository(Protocol):
    async def get(self, account_id: str) -> EmailAccount | None: ...

    async def list_for_user(self, user_id: str, active_only: bool = True) -> list[EmailAccount]: ...

    async def save(self, account: EmailAccount) -> None: ...


class UserRepository(Protocol):
    async def get(self, user_id: str) -> User | None: ...

    async def list_ids(self) -> list[str]: ...

    async def save(self, user: User) -> None: ...


class InMemoryEmailAccountRepository:
    def __init__(self, accounts: list[EmailAccount] | None = None):
        self._accounts: dict[str, EmailAccount] = {a.id: a for a in accounts or []}
        self._lock = asyncio.Lock()

    async def get(self, account_id: str) -> EmailAccount | None:
        return self._accounts.get(account_id)

    async def list_for_user(self, user_id: str, active_only: bool = True) -> list[EmailAccount]:
        return [
            a
            for a in self._accounts.values()
            if a.user_id == user_id and (a.is_active or not active_only)
        ]

    async def save(self, account: EmailAccount) -> None:
        async with self._lock:
            self._accounts[account.id] = account


class InMemoryUserRepository:
    def __init__(self, users: list[User] | None = None):
        self._users: dict[str, User] = {u.id: u for u in users or []}

    async def get(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def list_ids(self) -> list[str]:
        return list(self._users)

    async def save(self, user: User) -> None:
        self._users[user.id] = user
