from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from src.domain.access import AccessRule
from src.domain.expiry import ExpiryPolicy
from src.infrastructure.db.models import (
    CertificationLevel,
    CertificationLevelCourse,
    LevelAccessRule,
    UserCertificationLevel,
)
from src.infrastructure.repositories.certificates import year_window

if TYPE_CHECKING:
    from sqlalchemy import Select


def level_policy(level: CertificationLevel) -> ExpiryPolicy:
    return ExpiryPolicy.from_columns(
        level.certificate_expiry_type,
        level.certificate_expiry_value,
        level.certificate_expiry_date,
    )


def level_rules(level: CertificationLevel) -> list[AccessRule]:
    return [
        AccessRule(rule.rule_type, group_id=rule.group_id, user_id=rule.user_id)
        for rule in level.access_rules
    ]


def _with_courses_and_rules() -> tuple:
    return (
        selectinload(CertificationLevel.courses).selectinload(CertificationLevelCourse.course),
        selectinload(CertificationLevel.access_rules),
    )


class CertificationLevelRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_active(self) -> list[CertificationLevel]:
        stmt: Select[tuple[CertificationLevel]] = (
            select(CertificationLevel)
            .where(CertificationLevel.is_active.is_(True))
            .options(*_with_courses_and_rules())
            .order_by(CertificationLevel.position, CertificationLevel.name)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def get(self, level_id: str) -> CertificationLevel | None:
        stmt: Select[tuple[CertificationLevel]] = (
            select(CertificationLevel)
            .where(CertificationLevel.id == level_id)
            .options(*_with_courses_and_rules())
        )
        return await self.session.scalar(stmt)

    async def find_user_level(
        self, *, user_id: str, level_id: str
    ) -> UserCertificationLevel | None:
        stmt: Select[tuple[UserCertificationLevel]] = select(UserCertificationLevel).where(
            UserCertificationLevel.user_id == user_id,
            UserCertificationLevel.level_id == level_id,
        )
        return await self.session.scalar(stmt)

    async def list_user_levels(self, user_id: str) -> list[UserCertificationLevel]:
        stmt: Select[tuple[UserCertificationLevel]] = (
            select(UserCertificationLevel)
            .where(UserCertificationLevel.user_id == user_id)
            .options(
                selectinload(UserCertificationLevel.level)
                .selectinload(CertificationLevel.courses)
                .selectinload(CertificationLevelCourse.course)
            )
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def count_achieved_in_year(self, year: int) -> int:
        start, end = year_window(year)
        stmt = select(func.count(UserCertificationLevel.id)).where(
            UserCertificationLevel.achieved_at >= start,
            UserCertificationLevel.achieved_at < end,
        )
        return int(await self.session.scalar(stmt) or 0)

    async def numbers_with_prefix(self, prefix: str) -> list[str]:
        stmt = select(UserCertificationLevel.certificate_number).where(
            UserCertificationLevel.certificate_number.startswith(prefix)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def user_ids_with_levels(self, *, offset: int, limit: int) -> list[str]:
        stmt = (
            select(UserCertificationLevel.user_id)
            .distinct()
            .order_by(UserCertificationLevel.user_id)
            .offset(offset)
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    def add_level(self, level: CertificationLevel, rules: list[LevelAccessRule]) -> None:
        level.access_rules = rules
        self.session.add(level)

    def add_user_level(self, user_level: UserCertificationLevel) -> None:
        self.session.add(user_level)
