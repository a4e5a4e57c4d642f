from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession
from src.api.deps import issue_smoke_token
from src.core.auth import Role
from src.domain.access import AccessRuleType
from src.domain.expiry import ExpiryPolicy
from src.domain.models import CertificateData, LevelCertificateData
from src.infrastructure.db.models import (
    Certificate,
    CertificationLevel,
    CertificationLevelCourse,
    Course,
    CourseModule,
    Enrollment,
    Lesson,
    LessonProgress,
    LevelAccessRule,
    Quiz,
    QuizAttempt,
    UserGroup,
    UserGroupMember,
    UserModel,
    UserRole,
)
from src.libs.pdf_renderer import CertificateRenderError

FAKE_PDF = b"%PDF-1.7 fake"


def auth_headers(user_id: str = "learner-1", role: Role = Role.LEARNER) -> dict[str, str]:
    token = issue_smoke_token(user_id, role=role, email=f"{user_id}@example.com")
    return {"Authorization": f"Bearer {token}"}


@dataclass
class SeededCourse:
    course_id: str
    title: str
    lesson_ids: list[str] = field(default_factory=list)
    quiz_id: str | None = None


async def create_user(
    session: AsyncSession,
    user_id: str,
    *,
    full_name: str | None = "Ada Learner",
    role: UserRole = UserRole.LEARNER,
) -> UserModel:
    user = UserModel(id=user_id, email=f"{user_id}@example.com", full_name=full_name, role=role)
    session.add(user)
    await session.commit()
    return user


async def create_course(
    session: AsyncSession,
    *,
    instructor_id: str,
    title: str = "Python Basics",
    lessons: int = 2,
    with_quiz: bool = True,
    quiz_required: bool = True,
    max_attempts: int = 3,
    expiry: ExpiryPolicy | None = None,
) -> SeededCourse:
    expiry = expiry or ExpiryPolicy.never()
    course = Course(
        title=title,
        description=f"{title} description",
        instructor_id=instructor_id,
        certificate_expiry_type=expiry.kind,
        certificate_expiry_value=expiry.value,
        certificate_expiry_date=expiry.fixed_date,
    )
    module = CourseModule(title="Module 1", position=0)
    module.lessons = [Lesson(title=f"Lesson {i + 1}", position=i) for i in range(lessons)]
    if with_quiz:
        module.quiz = Quiz(
            title="Final quiz",
            is_required=quiz_required,
            passing_score=80,
            max_attempts=max_attempts,
        )
    course.modules = [module]
    session.add(course)
    await session.commit()

    return SeededCourse(
        course_id=course.id,
        title=title,
        lesson_ids=[lesson.id for lesson in module.lessons],
        quiz_id=module.quiz.id if with_quiz else None,
    )


async def enroll(session: AsyncSession, *, user_id: str, course_id: str) -> None:
    session.add(Enrollment(user_id=user_id, course_id=course_id))
    await session.commit()


async def complete_lessons(
    session: AsyncSession, *, user_id: str, lesson_ids: list[str]
) -> None:
    now = datetime.now(UTC)
    for lesson_id in lesson_ids:
        session.add(
            LessonProgress(user_id=user_id, lesson_id=lesson_id, completed=True, completed_at=now)
        )
    await session.commit()


async def record_attempt(
    session: AsyncSession,
    *,
    user_id: str,
    quiz_id: str,
    percentage: float = 90.0,
    passed: bool = True,
    finished: bool = True,
) -> None:
    now = datetime.now(UTC)
    session.add(
        QuizAttempt(
            user_id=user_id,
            quiz_id=quiz_id,
            percentage=percentage,
            passed=passed,
            started_at=now,
            completed_at=now if finished else None,
        )
    )
    await session.commit()


async def finish_course(session: AsyncSession, *, user_id: str, course: SeededCourse) -> None:
    """Enroll the user and record every lesson and a passing quiz attempt."""
    await enroll(session, user_id=user_id, course_id=course.course_id)
    await complete_lessons(session, user_id=user_id, lesson_ids=course.lesson_ids)
    if course.quiz_id:
        await record_attempt(session, user_id=user_id, quiz_id=course.quiz_id)


async def add_certificate(
    session: AsyncSession,
    *,
    user_id: str,
    course: SeededCourse,
    number: str,
    issued_at: datetime | None = None,
    expires_at: datetime | None = None,
) -> Certificate:
    issued_at = issued_at or datetime.now(UTC)
    certificate = Certificate(
        number=number,
        user_id=user_id,
        course_id=course.course_id,
        course_title=course.title,
        course_description=None,
        instructor_name="Grace Instructor",
        issued_at=issued_at,
        completed_at=issued_at,
        expires_at=expires_at,
        pdf_data=b"%PDF-seeded",
    )
    session.add(certificate)
    await session.commit()
    return certificate


async def create_group(session: AsyncSession, name: str, member_ids: list[str]) -> str:
    group = UserGroup(name=name)
    group.members = [UserGroupMember(user_id=user_id) for user_id in member_ids]
    session.add(group)
    await session.commit()
    return group.id


async def create_level(
    session: AsyncSession,
    *,
    name: str = "Associate",
    course_ids: list[str],
    rules: list[tuple[AccessRuleType, str | None]] | None = None,
    is_active: bool = True,
    expiry: ExpiryPolicy | None = None,
    position: int = 0,
) -> str:
    """Create a level; ``rules`` defaults to a single everyone-rule."""
    expiry = expiry or ExpiryPolicy.never()
    rules = [(AccessRuleType.ALL, None)] if rules is None else rules
    level = CertificationLevel(
        name=name,
        description=f"{name} level",
        position=position,
        is_active=is_active,
        certificate_expiry_type=expiry.kind,
        certificate_expiry_value=expiry.value,
        certificate_expiry_date=expiry.fixed_date,
    )
    level.courses = [
        CertificationLevelCourse(course_id=course_id, position=index)
        for index, course_id in enumerate(course_ids)
    ]
    level.access_rules = [
        LevelAccessRule(
            rule_type=rule_type,
            group_id=target if rule_type is AccessRuleType.GROUP else None,
            user_id=target if rule_type is AccessRuleType.USER else None,
        )
        for rule_type, target in rules
    ]
    session.add(level)
    await session.commit()
    return level.id


class FakeRenderer:
    """Records render calls and returns canned PDF bytes."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.rendered: list[CertificateData] = []
        self.rendered_levels: list[LevelCertificateData] = []
        self.before_return: Callable[[], Awaitable[None]] | None = None

    async def render_certificate(self, data: CertificateData) -> bytes:
        if self.fail:
            raise CertificateRenderError("render service unavailable", status_code=503)
        self.rendered.append(data)
        await self._hook()
        return FAKE_PDF

    async def render_level_certificate(self, data: LevelCertificateData) -> bytes:
        if self.fail:
            raise CertificateRenderError("render service unavailable", status_code=503)
        self.rendered_levels.append(data)
        await self._hook()
        return FAKE_PDF

    async def _hook(self) -> None:
        # One-shot side effect used to simulate a concurrent writer mid-render
        hook, self.before_return = self.before_return, None
        if hook is not None:
            await hook()


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def __call__(self, user_id: str) -> None:
        self.calls.append(user_id)
