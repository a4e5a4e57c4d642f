"""
Certification levels: access, eligibility and explicit unlocking.

A level bundles several courses. A learner whose access rules match and who
holds a currently valid certificate for every required course becomes
*eligible*; the level is only awarded when the learner unlocks it. Eligibility
is never turned into an achievement automatically.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from src.core.config import get_settings
from src.domain.access import AccessRule, has_access
from src.domain.clock import as_utc, is_still_valid, utcnow
from src.domain.expiry import ExpiryPolicy, compute_expiry
from src.domain.models import LevelCertificateData
from src.domain.numbering import CertificateNumbering
from src.infrastructure.db.models import (
    CertificationLevel,
    CertificationLevelCourse,
    Course,
    LevelAccessRule,
    UserCertificationLevel,
)
from src.infrastructure.db.session import get_session_factory
from src.infrastructure.repositories.certificates import CertificateRepository
from src.infrastructure.repositories.certification_levels import (
    CertificationLevelRepository,
    level_policy,
    level_rules,
)
from src.infrastructure.repositories.users import UserRepository
from src.libs.pdf_renderer import (
    CertificateRenderError,
    CertificateRendererProtocol,
    HttpPdfRenderer,
)

logger = structlog.get_logger()


class LevelNotAchievedError(Exception):
    """Raised when a level certificate is requested before the level was unlocked."""


class LevelCertificateMissingError(Exception):
    """Raised when an achievement exists without a stored artifact."""


class UnknownCourseError(Exception):
    """Raised when a level references courses that do not exist."""


class LevelCertificateNumberAllocationError(Exception):
    """Raised when no free level certificate number could be allocated."""


class UnlockFailure(str, enum.Enum):
    NOT_FOUND = "not_found"
    ALREADY_ACHIEVED = "already_achieved"
    NOT_ACCESSIBLE = "not_accessible"
    NOT_ELIGIBLE = "not_eligible"


@dataclass(slots=True)
class AchievementView:
    id: str
    achieved_at: datetime
    expires_at: datetime | None
    is_valid: bool
    certificate_number: str | None

    @classmethod
    def from_model(cls, user_level: UserCertificationLevel) -> AchievementView:
        return cls(
            id=user_level.id,
            achieved_at=as_utc(user_level.achieved_at),
            expires_at=as_utc(user_level.expires_at),
            is_valid=user_level.is_valid,
            certificate_number=user_level.certificate_number,
        )


@dataclass(slots=True)
class LevelCourseStatus:
    course_id: str
    title: str
    has_valid_certificate: bool


@dataclass(slots=True)
class LevelView:
    level_id: str
    name: str
    description: str | None
    position: int
    logo_url: str | None
    expiry_policy: ExpiryPolicy
    courses: list[LevelCourseStatus]
    eligible: bool
    earliest_certificate_expiry: datetime | None
    achievement: AchievementView | None

    @property
    def total_courses(self) -> int:
        return len(self.courses)

    @property
    def completed_courses(self) -> int:
        return sum(1 for course in self.courses if course.has_valid_certificate)

    @property
    def can_unlock(self) -> bool:
        return self.eligible and self.achievement is None


@dataclass(slots=True)
class UnlockResult:
    ok: bool
    reason: UnlockFailure | None = None
    achievement: AchievementView | None = None
    missing_courses: list[str] = field(default_factory=list)


class CertificationLevelService:
    """Evaluates certification levels for a learner and performs unlocks."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        renderer: CertificateRendererProtocol | None = None,
        numbering: CertificateNumbering | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.renderer = renderer or HttpPdfRenderer()
        self.numbering = numbering or CertificateNumbering.for_levels(settings)
        self.clock = clock
        self.site_title = settings.site_title
        self.levels = CertificationLevelRepository(session)
        self.certificates = CertificateRepository(session)
        self.users = UserRepository(session)

    async def list_accessible_levels(
        self, *, user_id: str, now: datetime | None = None
    ) -> list[LevelView]:
        now = now or self.clock()
        group_ids = await self.users.get_group_ids(user_id)
        levels = [
            level
            for level in await self.levels.list_active()
            if has_access(level_rules(level), user_id, group_ids)
        ]
        achievements = {
            user_level.level_id: user_level
            for user_level in await self.levels.list_user_levels(user_id)
        }

        required_ids = {link.course_id for level in levels for link in level.courses}
        certificates = {
            cert.course_id: cert
            for cert in await self.certificates.list_for_courses(
                user_id=user_id, course_ids=sorted(required_ids)
            )
        }

        views: list[LevelView] = []
        for level in levels:
            courses = [
                LevelCourseStatus(
                    course_id=link.course_id,
                    title=link.course.title,
                    has_valid_certificate=(
                        link.course_id in certificates
                        and is_still_valid(certificates[link.course_id].expires_at, now)
                    ),
                )
                for link in level.courses
            ]
            eligible = bool(courses) and all(course.has_valid_certificate for course in courses)
            expiries = [
                as_utc(certificates[course.course_id].expires_at)
                for course in courses
                if course.has_valid_certificate
                and certificates[course.course_id].expires_at is not None
            ]
            achievement = achievements.get(level.id)
            views.append(
                LevelView(
                    level_id=level.id,
                    name=level.name,
                    description=level.description,
                    position=level.position,
                    logo_url=level.logo_url,
                    expiry_policy=level_policy(level),
                    courses=courses,
                    eligible=eligible,
                    earliest_certificate_expiry=min(expiries) if eligible and expiries else None,
                    achievement=AchievementView.from_model(achievement) if achievement else None,
                )
            )
        return views

    async def refresh_eligibility(self, user_id: str) -> list[str]:
        """Report levels the user could unlock now. Never awards anything."""
        views = await self.list_accessible_levels(user_id=user_id)
        ready = [view for view in views if view.can_unlock]
        for view in ready:
            await logger.ainfo(
                "level_eligible_unlock_required",
                user_id=user_id,
                level_id=view.level_id,
                level_name=view.name,
            )
        return [view.level_id for view in ready]

    async def unlock(
        self, *, user_id: str, level_id: str, now: datetime | None = None
    ) -> UnlockResult:
        now = now or self.clock()
        level = await self.levels.get(level_id)
        if level is None:
            return UnlockResult(ok=False, reason=UnlockFailure.NOT_FOUND)

        if await self.levels.find_user_level(user_id=user_id, level_id=level_id) is not None:
            return UnlockResult(ok=False, reason=UnlockFailure.ALREADY_ACHIEVED)

        group_ids = await self.users.get_group_ids(user_id)
        if not level.is_active or not has_access(level_rules(level), user_id, group_ids):
            await logger.awarning("level_unlock_denied", user_id=user_id, level_id=level_id)
            return UnlockResult(ok=False, reason=UnlockFailure.NOT_ACCESSIBLE)

        required = [(link.course_id, link.course.title) for link in level.courses]
        valid_ids = await self.certificates.valid_course_ids(
            user_id=user_id, course_ids=[course_id for course_id, _ in required], now=now
        )
        missing = [title for course_id, title in required if course_id not in valid_ids]
        if not required or missing:
            return UnlockResult(
                ok=False, reason=UnlockFailure.NOT_ELIGIBLE, missing_courses=missing
            )

        user = await self.users.get(user_id)
        if user is None:
            return UnlockResult(ok=False, reason=UnlockFailure.NOT_ACCESSIBLE)

        certificate_data = LevelCertificateData(
            user_name=user.display_name,
            user_email=user.email,
            level_name=level.name,
            level_description=level.description,
            course_titles=[title for _, title in required],
            achieved_at=now,
            expires_at=compute_expiry(level_policy(level), now),
            certificate_number="",
            site_title=self.site_title,
            logo_url=level.logo_url,
        )
        return await self._award(user_id=user_id, level_id=level_id, template=certificate_data)

    async def _award(
        self, *, user_id: str, level_id: str, template: LevelCertificateData
    ) -> UnlockResult:
        year = template.achieved_at.year
        sequence = await self.levels.count_achieved_in_year(year) + 1
        for attempt in range(1, self.numbering.max_attempts + 1):
            data = replace(template, certificate_number=self.numbering.format(year, sequence))

            try:
                pdf_data = await self.renderer.render_level_certificate(data)
            except CertificateRenderError as exc:
                await logger.aerror(
                    "level_certificate_render_failed",
                    user_id=user_id,
                    level_id=level_id,
                    certificate_number=data.certificate_number,
                    error=str(exc),
                )
                raise

            user_level = UserCertificationLevel(
                id=str(uuid.uuid4()),
                user_id=user_id,
                level_id=level_id,
                achieved_at=data.achieved_at,
                expires_at=data.expires_at,
                is_valid=True,
                certificate_number=data.certificate_number,
                pdf_data=pdf_data,
            )
            achievement = AchievementView(
                id=user_level.id,
                achieved_at=data.achieved_at,
                expires_at=data.expires_at,
                is_valid=True,
                certificate_number=data.certificate_number,
            )
            self.levels.add_user_level(user_level)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                if await self.levels.find_user_level(user_id=user_id, level_id=level_id):
                    return UnlockResult(ok=False, reason=UnlockFailure.ALREADY_ACHIEVED)
                await logger.awarning(
                    "level_certificate_number_collision",
                    certificate_number=data.certificate_number,
                    attempt=attempt,
                )
                sequence = self.numbering.next_after(
                    year, await self.levels.numbers_with_prefix(self.numbering.year_prefix(year))
                )
                continue

            await logger.ainfo(
                "level_unlocked",
                user_id=user_id,
                level_id=level_id,
                level_name=data.level_name,
                certificate_number=data.certificate_number,
            )
            return UnlockResult(ok=True, achievement=achievement)

        raise LevelCertificateNumberAllocationError(
            "Could not allocate a level certificate number after "
            f"{self.numbering.max_attempts} attempts"
        )

    async def get_level_certificate(self, *, user_id: str, level_id: str) -> UserCertificationLevel:
        user_level = await self.levels.find_user_level(user_id=user_id, level_id=level_id)
        if user_level is None:
            raise LevelNotAchievedError("You have not achieved this certification level")
        if not user_level.pdf_data:
            raise LevelCertificateMissingError("No certificate stored for this achievement")
        return user_level

    async def create_level(
        self,
        *,
        name: str,
        description: str | None = None,
        position: int = 0,
        is_active: bool = True,
        logo_url: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        expiry_policy: ExpiryPolicy | None = None,
        course_ids: Sequence[str] = (),
        access_rules: Sequence[AccessRule] = (),
    ) -> CertificationLevel:
        """Create a level; the policy is validated strictly at this boundary."""
        policy = (expiry_policy or ExpiryPolicy.never()).validate()

        if course_ids:
            found = set(
                (await self.session.execute(select(Course.id).where(Course.id.in_(course_ids))))
                .scalars()
                .all()
            )
            unknown = [course_id for course_id in course_ids if course_id not in found]
            if unknown:
                raise UnknownCourseError(f"Unknown course(s): {', '.join(unknown)}")

        level = CertificationLevel(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            position=position,
            is_active=is_active,
            logo_url=logo_url,
            start_date=start_date,
            end_date=end_date,
            certificate_expiry_type=policy.kind,
            certificate_expiry_value=policy.value,
            certificate_expiry_date=policy.fixed_date,
        )
        level.courses = [
            CertificationLevelCourse(course_id=course_id, position=index)
            for index, course_id in enumerate(dict.fromkeys(course_ids))
        ]
        self.levels.add_level(
            level,
            [
                LevelAccessRule(
                    rule_type=rule.rule_type, group_id=rule.group_id, user_id=rule.user_id
                )
                for rule in access_rules
            ],
        )
        await self.session.commit()
        await logger.ainfo(
            "certification_level_created",
            level_id=level.id,
            course_count=len(level.courses),
            rule_count=len(access_rules),
        )
        return level


class EligibilityRefreshScheduler:
    """Fire-and-forget eligibility scan after a certificate is issued.

    Runs on its own session so it never shares a transaction with the issuer.
    Errors are logged and swallowed.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self.session_factory = session_factory
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, user_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self.run(user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run(self, user_id: str) -> list[str]:
        try:
            factory = self.session_factory or get_session_factory()
            async with factory() as session:
                return await CertificationLevelService(session).refresh_eligibility(user_id)
        except Exception as exc:
            logger.exception("level_eligibility_refresh_failed", user_id=user_id, error=str(exc))
            return []

    async def drain(self) -> None:
        """Wait for scheduled scans; used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
