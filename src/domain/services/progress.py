"""
Learner progress recording.

Each recorded lesson completion or passing quiz attempt triggers a completion
evaluation, which issues the course certificate once everything is done.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from src.domain.clock import utcnow
from src.domain.services.certificates import NOT_COMPLETED, CertificateService, CompletionResult
from src.infrastructure.db.models import LessonProgress, QuizAttempt
from src.infrastructure.repositories.progress import ProgressRepository

logger = structlog.get_logger()


class NotEnrolledError(Exception):
    """Raised when progress is recorded for a course the user is not enrolled in."""


class LessonNotFoundError(Exception):
    """Raised when a lesson does not exist."""


class QuizNotFoundError(Exception):
    """Raised when a quiz does not exist."""


class QuizAttemptsExhaustedError(Exception):
    """Raised when the user has used every allowed attempt."""


@dataclass(slots=True)
class LessonProgressResult:
    lesson_id: str
    course_id: str
    completed: bool
    completion: CompletionResult


@dataclass(slots=True)
class QuizAttemptResult:
    attempt_id: str
    quiz_id: str
    course_id: str
    percentage: float
    passed: bool
    attempts_used: int
    max_attempts: int
    completion: CompletionResult


class ProgressService:
    def __init__(
        self,
        session: AsyncSession,
        *,
        certificates: CertificateService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.clock = clock
        self.progress = ProgressRepository(session)
        self.certificates = certificates or CertificateService(session)

    async def _require_enrollment(self, *, user_id: str, course_id: str) -> None:
        enrollment = await self.progress.get_enrollment(user_id=user_id, course_id=course_id)
        if enrollment is None:
            raise NotEnrolledError("You are not enrolled in this course")

    async def record_lesson_progress(
        self, *, user_id: str, lesson_id: str, completed: bool = True
    ) -> LessonProgressResult:
        lesson = await self.progress.get_lesson(lesson_id)
        if lesson is None:
            raise LessonNotFoundError(f"Lesson {lesson_id} not found")
        course_id = lesson.module.course_id
        await self._require_enrollment(user_id=user_id, course_id=course_id)

        progress = await self.progress.get_lesson_progress(user_id=user_id, lesson_id=lesson_id)
        if progress is None:
            progress = LessonProgress(user_id=user_id, lesson_id=lesson_id)
            self.session.add(progress)

        if completed and not progress.completed:
            progress.completed_at = self.clock()
        elif not completed:
            progress.completed_at = None
        progress.completed = completed
        await self.session.commit()

        await logger.ainfo(
            "lesson_progress_recorded",
            user_id=user_id,
            lesson_id=lesson_id,
            course_id=course_id,
            completed=completed,
        )

        completion = NOT_COMPLETED
        if completed:
            completion = await self.certificates.evaluate_and_issue(
                user_id=user_id, course_id=course_id
            )
        return LessonProgressResult(
            lesson_id=lesson_id,
            course_id=course_id,
            completed=completed,
            completion=completion,
        )

    async def record_quiz_attempt(
        self, *, user_id: str, quiz_id: str, percentage: float
    ) -> QuizAttemptResult:
        quiz = await self.progress.get_quiz(quiz_id)
        if quiz is None:
            raise QuizNotFoundError(f"Quiz {quiz_id} not found")
        course_id = quiz.module.course_id
        await self._require_enrollment(user_id=user_id, course_id=course_id)

        used = await self.progress.count_completed_attempts(user_id=user_id, quiz_id=quiz_id)
        if quiz.max_attempts > 0 and used >= quiz.max_attempts:
            raise QuizAttemptsExhaustedError(
                f"Maximum attempts ({quiz.max_attempts}) reached for this quiz"
            )

        passed = percentage >= quiz.passing_score
        now = self.clock()
        attempt_id = str(uuid.uuid4())
        self.session.add(
            QuizAttempt(
                id=attempt_id,
                quiz_id=quiz_id,
                user_id=user_id,
                percentage=percentage,
                passed=passed,
                started_at=now,
                completed_at=now,
            )
        )
        max_attempts = quiz.max_attempts
        await self.session.commit()

        await logger.ainfo(
            "quiz_attempt_recorded",
            user_id=user_id,
            quiz_id=quiz_id,
            course_id=course_id,
            percentage=percentage,
            passed=passed,
        )

        completion = NOT_COMPLETED
        if passed:
            completion = await self.certificates.evaluate_and_issue(
                user_id=user_id, course_id=course_id
            )
        return QuizAttemptResult(
            attempt_id=attempt_id,
            quiz_id=quiz_id,
            course_id=course_id,
            percentage=percentage,
            passed=passed,
            attempts_used=used + 1,
            max_attempts=max_attempts,
            completion=completion,
        )
