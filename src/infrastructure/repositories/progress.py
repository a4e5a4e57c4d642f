"""Read side of learner progress: lessons, quizzes and enrollment state."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from src.domain.expiry import ExpiryPolicy
from src.domain.models import CourseProgressSnapshot, LessonState, QuizState
from src.infrastructure.db.models import (
    Course,
    CourseModule,
    Enrollment,
    Lesson,
    LessonProgress,
    Quiz,
    QuizAttempt,
)

if TYPE_CHECKING:
    from sqlalchemy import Select


class ProgressRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def load_snapshot(self, *, user_id: str, course_id: str) -> CourseProgressSnapshot | None:
        """Load the course graph together with the user's progress.

        Returns ``None`` when the course does not exist.
        """
        stmt: Select[tuple[Course]] = (
            select(Course)
            .where(Course.id == course_id)
            .options(
                selectinload(Course.instructor),
                selectinload(Course.modules).selectinload(CourseModule.lessons),
                selectinload(Course.modules).selectinload(CourseModule.quiz),
            )
        )
        course = await self.session.scalar(stmt)
        if course is None:
            return None

        enrollment = await self.get_enrollment(user_id=user_id, course_id=course_id)

        lesson_ids = [lesson.id for module in course.modules for lesson in module.lessons]
        quizzes = [module.quiz for module in course.modules if module.quiz is not None]

        completed_lessons = await self._completed_lesson_ids(user_id, lesson_ids)
        passed_quizzes = await self._passed_quiz_ids(user_id, [quiz.id for quiz in quizzes])

        instructor = course.instructor
        return CourseProgressSnapshot(
            course_id=course.id,
            title=course.title,
            description=course.description,
            instructor_name=(instructor.full_name if instructor else None) or "Unknown",
            expiry_policy=ExpiryPolicy.from_columns(
                course.certificate_expiry_type,
                course.certificate_expiry_value,
                course.certificate_expiry_date,
            ),
            enrolled=enrollment is not None,
            enrollment_completed_at=enrollment.completed_at if enrollment else None,
            lessons=[
                LessonState(lesson_id=lesson_id, completed=lesson_id in completed_lessons)
                for lesson_id in lesson_ids
            ],
            quizzes=[
                QuizState(
                    quiz_id=quiz.id,
                    is_required=quiz.is_required,
                    passed=quiz.id in passed_quizzes,
                )
                for quiz in quizzes
            ],
        )

    async def get_enrollment(self, *, user_id: str, course_id: str) -> Enrollment | None:
        stmt: Select[tuple[Enrollment]] = select(Enrollment).where(
            Enrollment.user_id == user_id, Enrollment.course_id == course_id
        )
        return await self.session.scalar(stmt)

    async def mark_enrollment_completed(
        self, *, user_id: str, course_id: str, completed_at: datetime
    ) -> datetime | None:
        """Set ``completed_at`` only if it is still empty and return the stored value."""
        await self.session.execute(
            update(Enrollment)
            .where(
                Enrollment.user_id == user_id,
                Enrollment.course_id == course_id,
                Enrollment.completed_at.is_(None),
            )
            .values(completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        stmt = select(Enrollment.completed_at).where(
            Enrollment.user_id == user_id, Enrollment.course_id == course_id
        )
        return await self.session.scalar(stmt)

    async def get_lesson(self, lesson_id: str) -> Lesson | None:
        stmt: Select[tuple[Lesson]] = (
            select(Lesson).where(Lesson.id == lesson_id).options(selectinload(Lesson.module))
        )
        return await self.session.scalar(stmt)

    async def get_lesson_progress(self, *, user_id: str, lesson_id: str) -> LessonProgress | None:
        stmt: Select[tuple[LessonProgress]] = select(LessonProgress).where(
            LessonProgress.user_id == user_id, LessonProgress.lesson_id == lesson_id
        )
        return await self.session.scalar(stmt)

    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        stmt: Select[tuple[Quiz]] = (
            select(Quiz).where(Quiz.id == quiz_id).options(selectinload(Quiz.module))
        )
        return await self.session.scalar(stmt)

    async def count_completed_attempts(self, *, user_id: str, quiz_id: str) -> int:
        stmt = select(func.count(QuizAttempt.id)).where(
            QuizAttempt.user_id == user_id,
            QuizAttempt.quiz_id == quiz_id,
            QuizAttempt.completed_at.is_not(None),
        )
        return int(await self.session.scalar(stmt) or 0)

    async def _completed_lesson_ids(self, user_id: str, lesson_ids: list[str]) -> set[str]:
        if not lesson_ids:
            return set()
        stmt = select(LessonProgress.lesson_id).where(
            LessonProgress.user_id == user_id,
            LessonProgress.lesson_id.in_(lesson_ids),
            LessonProgress.completed.is_(True),
        )
        return set((await self.session.execute(stmt)).scalars().all())

    async def _passed_quiz_ids(self, user_id: str, quiz_ids: list[str]) -> set[str]:
        if not quiz_ids:
            return set()
        stmt = select(QuizAttempt.quiz_id).where(
            QuizAttempt.user_id == user_id,
            QuizAttempt.quiz_id.in_(quiz_ids),
            QuizAttempt.passed.is_(True),
            QuizAttempt.completed_at.is_not(None),
        )
        return set((await self.session.execute(stmt)).scalars().all())
