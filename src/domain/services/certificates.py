"""
Course completion evaluation and certificate issuance.

A course is complete when every lesson is completed and every required quiz
has a passed, finished attempt. Completion issues exactly one certificate per
(user, course); repeated or concurrent evaluations return the existing one.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.config import get_settings
from src.domain import User
from src.domain.clock import as_utc, utcnow
from src.domain.expiry import compute_expiry
from src.domain.models import CertificateData, CourseProgressSnapshot
from src.domain.numbering import CertificateNumbering
from src.infrastructure.db.models import Certificate
from src.infrastructure.repositories.certificates import CertificateRepository
from src.infrastructure.repositories.progress import ProgressRepository
from src.infrastructure.repositories.users import UserRepository
from src.libs.pdf_renderer import (
    CertificateRenderError,
    CertificateRendererProtocol,
    HttpPdfRenderer,
)

logger = structlog.get_logger()

EligibilityNotifier = Callable[[str], None]


class CertificateNotFoundError(Exception):
    """Raised when a certificate does not exist."""


class CertificateAccessDeniedError(Exception):
    """Raised when a user asks for someone else's certificate."""


class CertificateNumberAllocationError(Exception):
    """Raised when no free certificate number could be allocated."""


class UserNotFoundError(Exception):
    """Raised when the certificate holder has no user record."""


@dataclass(frozen=True, slots=True)
class CompletionResult:
    completed: bool
    issued: bool
    certificate_id: str | None = None


NOT_COMPLETED = CompletionResult(completed=False, issued=False)


class CertificateService:
    """Decides course completion and issues certificates."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        renderer: CertificateRendererProtocol | None = None,
        numbering: CertificateNumbering | None = None,
        notifier: EligibilityNotifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.renderer = renderer or HttpPdfRenderer()
        self.numbering = numbering or CertificateNumbering.for_courses(settings)
        self.notifier = notifier
        self.clock = clock
        self.site_title = settings.site_title
        self.logo_url = settings.logo_url
        self.progress = ProgressRepository(session)
        self.certificates = CertificateRepository(session)
        self.users = UserRepository(session)

    async def evaluate_and_issue(self, *, user_id: str, course_id: str) -> CompletionResult:
        snapshot = await self.progress.load_snapshot(user_id=user_id, course_id=course_id)
        if snapshot is None or not snapshot.enrolled:
            await logger.ainfo(
                "course_completion_not_enrolled", user_id=user_id, course_id=course_id
            )
            return NOT_COMPLETED

        if not snapshot.is_complete:
            await logger.adebug(
                "course_completion_pending",
                user_id=user_id,
                course_id=course_id,
                lessons_complete=snapshot.all_lessons_complete,
                required_quizzes_passed=snapshot.all_required_quizzes_passed,
            )
            return NOT_COMPLETED

        completed_at = await self.progress.mark_enrollment_completed(
            user_id=user_id, course_id=course_id, completed_at=self.clock()
        )
        await self.session.commit()

        existing = await self.certificates.find_by_user_course(user_id=user_id, course_id=course_id)
        if existing is not None:
            return CompletionResult(completed=True, issued=False, certificate_id=existing.id)

        return await self._issue(
            user_id=user_id,
            snapshot=snapshot,
            completed_at=as_utc(completed_at) or self.clock(),
        )

    async def _issue(
        self, *, user_id: str, snapshot: CourseProgressSnapshot, completed_at: datetime
    ) -> CompletionResult:
        user = await self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        # Read before any rollback expires the instance
        user_name, user_email = user.display_name, user.email
        expires_at = compute_expiry(snapshot.expiry_policy, completed_at)

        sequence: int | None = None
        for attempt in range(1, self.numbering.max_attempts + 1):
            issued_at = self.clock()
            if sequence is None:
                sequence = await self.certificates.count_issued_in_year(issued_at.year) + 1
            number = self.numbering.format(issued_at.year, sequence)

            try:
                pdf_data = await self.renderer.render_certificate(
                    CertificateData(
                        user_name=user_name,
                        user_email=user_email,
                        course_title=snapshot.title,
                        course_description=snapshot.description,
                        instructor_name=snapshot.instructor_name,
                        completed_at=completed_at,
                        expires_at=expires_at,
                        certificate_number=number,
                        site_title=self.site_title,
                        logo_url=self.logo_url,
                    )
                )
            except CertificateRenderError as exc:
                await logger.aerror(
                    "certificate_render_failed",
                    user_id=user_id,
                    course_id=snapshot.course_id,
                    certificate_number=number,
                    error=str(exc),
                )
                raise

            certificate_id = str(uuid.uuid4())
            self.certificates.add(
                Certificate(
                    id=certificate_id,
                    number=number,
                    user_id=user_id,
                    course_id=snapshot.course_id,
                    course_title=snapshot.title,
                    course_description=snapshot.description,
                    instructor_name=snapshot.instructor_name,
                    issued_at=issued_at,
                    completed_at=completed_at,
                    expires_at=expires_at,
                    pdf_data=pdf_data,
                )
            )
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                winner = await self.certificates.find_by_user_course(
                    user_id=user_id, course_id=snapshot.course_id
                )
                if winner is not None:
                    await logger.ainfo(
                        "certificate_issue_race_lost",
                        user_id=user_id,
                        course_id=snapshot.course_id,
                        certificate_id=winner.id,
                    )
                    return CompletionResult(completed=True, issued=False, certificate_id=winner.id)
                await logger.awarning(
                    "certificate_number_collision",
                    certificate_number=number,
                    attempt=attempt,
                )
                sequence = self.numbering.next_after(
                    issued_at.year,
                    await self.certificates.numbers_with_prefix(
                        self.numbering.year_prefix(issued_at.year)
                    ),
                )
                continue

            await logger.ainfo(
                "certificate_issued",
                user_id=user_id,
                course_id=snapshot.course_id,
                certificate_id=certificate_id,
                certificate_number=number,
                expires_at=expires_at.isoformat() if expires_at else None,
            )
            self._notify_level_eligibility(user_id)
            return CompletionResult(completed=True, issued=True, certificate_id=certificate_id)

        raise CertificateNumberAllocationError(
            f"Could not allocate a certificate number after {self.numbering.max_attempts} attempts"
        )

    def _notify_level_eligibility(self, user_id: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(user_id)
        except Exception as exc:
            logger.exception("level_eligibility_refresh_failed", user_id=user_id, error=str(exc))

    async def list_for_user(self, user_id: str) -> list[Certificate]:
        return await self.certificates.list_for_user(user_id)

    async def get_for_download(self, *, certificate_id: str, user: User) -> Certificate:
        certificate = await self.certificates.get(certificate_id)
        if certificate is None:
            raise CertificateNotFoundError(f"Certificate {certificate_id} not found")
        if certificate.user_id != user.user_id and not user.is_admin:
            raise CertificateAccessDeniedError("You do not own this certificate")
        return certificate
