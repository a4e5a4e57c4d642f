from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from src.infrastructure.db.models import UserGroupMember, UserModel


class UserRepository:
    """User lookups, including group membership for access-rule checks."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> UserModel | None:
        return await self.session.get(UserModel, user_id)

    async def get_group_ids(self, user_id: str) -> set[str]:
        stmt = select(UserGroupMember.group_id).where(UserGroupMember.user_id == user_id)
        return set((await self.session.execute(stmt)).scalars().all())
