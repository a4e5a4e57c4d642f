"""Unit tests for course completion evaluation and certificate issuance."""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from src.domain import User
from src.domain.expiry import ExpiryPolicy
from src.domain.services.certificates import (
    NOT_COMPLETED,
    CertificateAccessDeniedError,
    CertificateNotFoundError,
    CertificateService,
)
from src.infrastructure.db.models import Certificate, Course, Enrollment
from src.libs.pdf_renderer import CertificateRenderError

from tests.utils import (
    FAKE_PDF,
    FakeRenderer,
    RecordingNotifier,
    SeededCourse,
    add_certificate,
    complete_lessons,
    create_course,
    create_user,
    enroll,
    finish_course,
    record_attempt,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def make_service(
    session: AsyncSession,
    renderer: FakeRenderer,
    notifier: RecordingNotifier | None = None,
    now: datetime = NOW,
) -> CertificateService:
    return CertificateService(session, renderer=renderer, notifier=notifier, clock=lambda: now)


async def certificate_count(session: AsyncSession) -> int:
    return int(await session.scalar(select(func.count(Certificate.id))) or 0)


@pytest.fixture()
async def course(db: AsyncSession, instructor: str) -> SeededCourse:
    return await create_course(db, instructor_id=instructor)


class TestEvaluateAndIssue:
    async def test_issues_certificate_when_course_is_complete(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
        notifier: RecordingNotifier,
    ) -> None:
        await finish_course(db, user_id=learner, course=course)

        async with session_factory() as session:
            result = await make_service(session, renderer, notifier).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )

        assert result.completed is True
        assert result.issued is True
        assert result.certificate_id is not None

        async with session_factory() as session:
            certificate = await session.get(Certificate, result.certificate_id)
            enrollment = await session.scalar(
                select(Enrollment).where(Enrollment.user_id == learner)
            )
        assert certificate.number == "CV-2024-00001"
        assert certificate.course_title == "Python Basics"
        assert certificate.course_description == "Python Basics description"
        assert certificate.instructor_name == "Grace Instructor"
        assert certificate.expires_at is None
        assert certificate.pdf_data == FAKE_PDF
        assert enrollment.completed_at is not None
        assert notifier.calls == [learner]

        rendered = renderer.rendered[0]
        assert rendered.user_name == "Ada Learner"
        assert rendered.certificate_number == "CV-2024-00001"
        assert rendered.site_title == "Learning Portal"

    async def test_repeated_evaluation_returns_existing_certificate(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
        notifier: RecordingNotifier,
    ) -> None:
        await finish_course(db, user_id=learner, course=course)

        async with session_factory() as session:
            first = await make_service(session, renderer, notifier).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )
        async with session_factory() as session:
            second = await make_service(session, renderer, notifier).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )
            assert await certificate_count(session) == 1

        assert second.completed is True
        assert second.issued is False
        assert second.certificate_id == first.certificate_id
        assert len(renderer.rendered) == 1
        assert notifier.calls == [learner]

    async def test_not_enrolled_is_not_complete(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        await complete_lessons(db, user_id=learner, lesson_ids=course.lesson_ids)
        await record_attempt(db, user_id=learner, quiz_id=course.quiz_id)

        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )
            assert await certificate_count(session) == 0

        assert result.completed is False
        assert result.issued is False
        assert renderer.rendered == []

    def test_shared_not_completed_result_cannot_be_altered(self) -> None:
        with pytest.raises(FrozenInstanceError):
            NOT_COMPLETED.issued = True  # type: ignore[misc]

        assert NOT_COMPLETED.completed is False
        assert NOT_COMPLETED.issued is False

    async def test_unknown_course_is_not_complete(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        renderer: FakeRenderer,
    ) -> None:
        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id="missing-course"
            )

        assert result.completed is False

    async def test_unfinished_lesson_blocks_completion(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        await enroll(db, user_id=learner, course_id=course.course_id)
        await complete_lessons(db, user_id=learner, lesson_ids=course.lesson_ids[:1])
        await record_attempt(db, user_id=learner, quiz_id=course.quiz_id)

        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )

        assert result.completed is False

    @pytest.mark.parametrize(
        ("passed", "finished"),
        [(False, True), (True, False)],
        ids=["failed-attempt", "unfinished-attempt"],
    )
    async def test_required_quiz_needs_a_passed_finished_attempt(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
        passed: bool,
        finished: bool,
    ) -> None:
        await enroll(db, user_id=learner, course_id=course.course_id)
        await complete_lessons(db, user_id=learner, lesson_ids=course.lesson_ids)
        await record_attempt(
            db, user_id=learner, quiz_id=course.quiz_id, passed=passed, finished=finished
        )

        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )

        assert result.completed is False

    async def test_optional_quiz_does_not_block_completion(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        instructor: str,
        renderer: FakeRenderer,
    ) -> None:
        optional = await create_course(db, instructor_id=instructor, quiz_required=False)
        await enroll(db, user_id=learner, course_id=optional.course_id)
        await complete_lessons(db, user_id=learner, lesson_ids=optional.lesson_ids)

        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id=optional.course_id
            )

        assert result.issued is True

    async def test_course_without_lessons_completes_on_enrollment(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        instructor: str,
        renderer: FakeRenderer,
    ) -> None:
        empty = await create_course(db, instructor_id=instructor, lessons=0, with_quiz=False)
        await enroll(db, user_id=learner, course_id=empty.course_id)

        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id=empty.course_id
            )

        assert result.issued is True

    async def test_expiry_follows_course_policy(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        instructor: str,
        renderer: FakeRenderer,
    ) -> None:
        monthly = await create_course(db, instructor_id=instructor, expiry=ExpiryPolicy.months(1))
        await finish_course(db, user_id=learner, course=monthly)
        completed_on = datetime(2024, 1, 31, 9, 0, tzinfo=UTC)

        async with session_factory() as session:
            result = await make_service(session, renderer, now=completed_on).evaluate_and_issue(
                user_id=learner, course_id=monthly.course_id
            )
            certificate = await session.get(Certificate, result.certificate_id)

        assert certificate.expires_at.replace(tzinfo=UTC) == datetime(2024, 2, 29, 9, 0, tzinfo=UTC)
        assert renderer.rendered[0].expires_at == datetime(2024, 2, 29, 9, 0, tzinfo=UTC)

    async def test_render_failure_writes_no_certificate(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        notifier: RecordingNotifier,
    ) -> None:
        await finish_course(db, user_id=learner, course=course)
        failing = FakeRenderer(fail=True)

        async with session_factory() as session:
            with pytest.raises(CertificateRenderError):
                await make_service(session, failing, notifier).evaluate_and_issue(
                    user_id=learner, course_id=course.course_id
                )

        async with session_factory() as session:
            assert await certificate_count(session) == 0
        assert notifier.calls == []

    async def test_retry_after_render_failure_issues_certificate(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        await finish_course(db, user_id=learner, course=course)

        async with session_factory() as session:
            with pytest.raises(CertificateRenderError):
                await make_service(session, FakeRenderer(fail=True)).evaluate_and_issue(
                    user_id=learner, course_id=course.course_id
                )
        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )

        assert result.issued is True

    async def test_failing_notifier_does_not_fail_issuance(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        await finish_course(db, user_id=learner, course=course)

        def broken_notifier(user_id: str) -> None:
            raise RuntimeError("queue unavailable")

        async with session_factory() as session:
            service = CertificateService(
                session, renderer=renderer, notifier=broken_notifier, clock=lambda: NOW
            )
            result = await service.evaluate_and_issue(user_id=learner, course_id=course.course_id)

        assert result.issued is True

    async def test_course_edits_leave_issued_certificate_untouched(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        await finish_course(db, user_id=learner, course=course)
        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )

        await db.execute(
            update(Course).where(Course.id == course.course_id).values(title="Renamed")
        )
        await db.commit()

        async with session_factory() as session:
            certificate = await session.get(Certificate, result.certificate_id)
        assert certificate.course_title == "Python Basics"


class TestNumbering:
    async def test_numbers_are_sequential_within_a_year(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        await create_user(db, "learner-2", full_name="Bob Learner")
        await finish_course(db, user_id=learner, course=course)
        await finish_course(db, user_id="learner-2", course=course)

        numbers = []
        for user_id in (learner, "learner-2"):
            async with session_factory() as session:
                result = await make_service(session, renderer).evaluate_and_issue(
                    user_id=user_id, course_id=course.course_id
                )
                numbers.append((await session.get(Certificate, result.certificate_id)).number)

        assert numbers == ["CV-2024-00001", "CV-2024-00002"]

    async def test_sequence_restarts_each_year(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        instructor: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        await create_user(db, "learner-2")
        await add_certificate(
            db,
            user_id="learner-2",
            course=course,
            number="CV-2024-00001",
            issued_at=datetime(2024, 12, 31, 23, 0, tzinfo=UTC),
        )
        await finish_course(db, user_id=learner, course=course)
        new_year = datetime(2025, 1, 2, 8, 0, tzinfo=UTC)

        async with session_factory() as session:
            result = await make_service(session, renderer, now=new_year).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )
            certificate = await session.get(Certificate, result.certificate_id)

        assert certificate.number == "CV-2025-00001"


class TestConcurrentIssuance:
    async def test_losing_a_race_returns_the_winners_certificate(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
        notifier: RecordingNotifier,
    ) -> None:
        await finish_course(db, user_id=learner, course=course)
        winner_ids: list[str] = []

        async def concurrent_issue() -> None:
            async with session_factory() as other:
                winner = await add_certificate(
                    other, user_id=learner, course=course, number="CV-2024-09999"
                )
                winner_ids.append(winner.id)

        renderer.before_return = concurrent_issue

        async with session_factory() as session:
            result = await make_service(session, renderer, notifier).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )
            assert await certificate_count(session) == 1

        assert result.completed is True
        assert result.issued is False
        assert result.certificate_id == winner_ids[0]
        assert notifier.calls == []

    async def test_number_collision_is_retried_with_next_number(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        await create_user(db, "learner-2")
        await finish_course(db, user_id=learner, course=course)

        async def steal_number() -> None:
            async with session_factory() as other:
                await add_certificate(
                    other,
                    user_id="learner-2",
                    course=course,
                    number="CV-2024-00001",
                    issued_at=NOW,
                )

        renderer.before_return = steal_number

        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )
            certificate = await session.get(Certificate, result.certificate_id)

        assert result.issued is True
        assert certificate.number == "CV-2024-00002"
        assert [data.certificate_number for data in renderer.rendered] == [
            "CV-2024-00001",
            "CV-2024-00002",
        ]

    async def test_gap_in_sequence_is_skipped_after_collision(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        # CV-2024-00001 was deleted, so the yearly count points at a taken number
        await create_user(db, "learner-2")
        await add_certificate(
            db, user_id="learner-2", course=course, number="CV-2024-00002", issued_at=NOW
        )
        await finish_course(db, user_id=learner, course=course)

        async with session_factory() as session:
            result = await make_service(session, renderer).evaluate_and_issue(
                user_id=learner, course_id=course.course_id
            )
            certificate = await session.get(Certificate, result.certificate_id)

        assert result.issued is True
        assert certificate.number == "CV-2024-00003"
        assert [data.certificate_number for data in renderer.rendered] == [
            "CV-2024-00002",
            "CV-2024-00003",
        ]


class TestDownload:
    async def test_owner_and_admin_can_download(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        certificate = await add_certificate(
            db, user_id=learner, course=course, number="CV-2024-00001"
        )

        async with session_factory() as session:
            service = make_service(session, renderer)
            owned = await service.get_for_download(
                certificate_id=certificate.id, user=User(user_id=learner, roles=["learner"])
            )
            as_admin = await service.get_for_download(
                certificate_id=certificate.id, user=User(user_id="root", roles=["admin"])
            )

        assert owned.id == certificate.id
        assert as_admin.pdf_data == b"%PDF-seeded"

    async def test_other_users_are_denied(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        learner: str,
        course: SeededCourse,
        renderer: FakeRenderer,
    ) -> None:
        certificate = await add_certificate(
            db, user_id=learner, course=course, number="CV-2024-00001"
        )

        async with session_factory() as session:
            service = make_service(session, renderer)
            with pytest.raises(CertificateAccessDeniedError):
                await service.get_for_download(
                    certificate_id=certificate.id, user=User(user_id="intruder", roles=["learner"])
                )
            with pytest.raises(CertificateNotFoundError):
                await service.get_for_download(
                    certificate_id="missing", user=User(user_id=learner, roles=["learner"])
                )
