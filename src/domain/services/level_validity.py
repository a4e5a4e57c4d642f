from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from src.domain.clock import as_utc, utcnow
from src.infrastructure.repositories.certificates import CertificateRepository
from src.infrastructure.repositories.certification_levels import CertificationLevelRepository

logger = structlog.get_logger()


@dataclass(slots=True)
class ReconcileReport:
    checked: int = 0
    changed: int = 0

    def merge(self, other: ReconcileReport) -> None:
        self.checked += other.checked
        self.changed += other.changed


class LevelValidityService:
    """Keeps ``UserCertificationLevel.is_valid`` in step with the underlying certificates.

    A level is valid while its own expiry has not passed and every required
    course still has a current certificate. Validity can flip back to true after
    a certificate is renewed; records are never deleted.
    """

    def __init__(
        self, session: AsyncSession, *, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.session = session
        self.clock = clock
        self.levels = CertificationLevelRepository(session)
        self.certificates = CertificateRepository(session)

    async def reconcile_validity(
        self, *, user_id: str, now: datetime | None = None
    ) -> ReconcileReport:
        now = now or self.clock()
        report = ReconcileReport()

        for user_level in await self.levels.list_user_levels(user_id):
            report.checked += 1
            required = [link.course_id for link in user_level.level.courses]
            valid_ids = await self.certificates.valid_course_ids(
                user_id=user_id, course_ids=required, now=now
            )
            courses_still_valid = all(course_id in valid_ids for course_id in required)
            expires_at = as_utc(user_level.expires_at)
            expired = expires_at is not None and expires_at < now
            should_be_valid = not expired and courses_still_valid

            if user_level.is_valid == should_be_valid:
                continue

            user_level.is_valid = should_be_valid
            report.changed += 1
            await logger.ainfo(
                "level_validity_changed",
                user_id=user_id,
                level_id=user_level.level_id,
                is_valid=should_be_valid,
                level_expired=expired,
                courses_still_valid=courses_still_valid,
            )

        if report.changed:
            await self.session.commit()
        return report

    async def reconcile_all(
        self, *, batch_size: int, now: datetime | None = None
    ) -> ReconcileReport:
        """Sweep every user holding at least one level, ``batch_size`` users at a time."""
        now = now or self.clock()
        total = ReconcileReport()
        offset = 0
        while True:
            user_ids = await self.levels.user_ids_with_levels(offset=offset, limit=batch_size)
            if not user_ids:
                break
            for user_id in user_ids:
                total.merge(await self.reconcile_validity(user_id=user_id, now=now))
            offset += len(user_ids)

        await logger.ainfo(
            "level_validity_sweep_completed", checked=total.checked, changed=total.changed
        )
        return total
