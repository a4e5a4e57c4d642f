from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from src.domain.clock import is_still_valid
from src.infrastructure.db.models import Certificate

if TYPE_CHECKING:
    from sqlalchemy import Select


def year_window(year: int) -> tuple[datetime, datetime]:
    """Half-open interval [Jan 1 of ``year``, Jan 1 of the next year) in UTC."""
    return datetime(year, 1, 1, tzinfo=UTC), datetime(year + 1, 1, 1, tzinfo=UTC)


class CertificateRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, certificate_id: str) -> Certificate | None:
        return await self.session.get(Certificate, certificate_id)

    async def find_by_user_course(self, *, user_id: str, course_id: str) -> Certificate | None:
        stmt: Select[tuple[Certificate]] = select(Certificate).where(
            Certificate.user_id == user_id, Certificate.course_id == course_id
        )
        return await self.session.scalar(stmt)

    async def count_issued_in_year(self, year: int) -> int:
        start, end = year_window(year)
        stmt = select(func.count(Certificate.id)).where(
            Certificate.issued_at >= start, Certificate.issued_at < end
        )
        return int(await self.session.scalar(stmt) or 0)

    async def numbers_with_prefix(self, prefix: str) -> list[str]:
        stmt = select(Certificate.number).where(Certificate.number.startswith(prefix))
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_for_user(self, user_id: str) -> list[Certificate]:
        stmt: Select[tuple[Certificate]] = (
            select(Certificate)
            .where(Certificate.user_id == user_id)
            .order_by(Certificate.issued_at.desc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_for_courses(
        self, *, user_id: str, course_ids: Sequence[str]
    ) -> list[Certificate]:
        if not course_ids:
            return []
        stmt: Select[tuple[Certificate]] = select(Certificate).where(
            Certificate.user_id == user_id, Certificate.course_id.in_(course_ids)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def valid_course_ids(
        self, *, user_id: str, course_ids: Sequence[str], now: datetime
    ) -> set[str]:
        """Course ids for which the user holds a certificate that has not expired at ``now``."""
        certificates = await self.list_for_courses(user_id=user_id, course_ids=course_ids)
        return {cert.course_id for cert in certificates if is_still_valid(cert.expires_at, now)}

    def add(self, certificate: Certificate) -> None:
        self.session.add(certificate)
