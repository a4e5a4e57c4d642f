from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from src.domain.clock import utcnow
from src.domain.expiry import ExpiryPolicy


@dataclass(slots=True)
class User:
    """Represents an authenticated actor within the system."""

    user_id: str
    email: str = ""
    roles: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


@dataclass(slots=True)
class LessonState:
    lesson_id: str
    completed: bool


@dataclass(slots=True)
class QuizState:
    quiz_id: str
    is_required: bool
    passed: bool


@dataclass(slots=True)
class CourseProgressSnapshot:
    """A learner's progress through one course, loaded in a single read."""

    course_id: str
    title: str
    description: str | None
    instructor_name: str
    expiry_policy: ExpiryPolicy
    enrolled: bool
    enrollment_completed_at: datetime | None = None
    lessons: list[LessonState] = field(default_factory=list)
    quizzes: list[QuizState] = field(default_factory=list)

    @property
    def all_lessons_complete(self) -> bool:
        return all(lesson.completed for lesson in self.lessons)

    @property
    def all_required_quizzes_passed(self) -> bool:
        return all(quiz.passed for quiz in self.quizzes if quiz.is_required)

    @property
    def is_complete(self) -> bool:
        return self.all_lessons_complete and self.all_required_quizzes_passed


@dataclass(slots=True)
class CertificateData:
    """Everything the renderer needs to draw a course certificate."""

    user_name: str
    user_email: str
    course_title: str
    course_description: str | None
    instructor_name: str
    completed_at: datetime
    expires_at: datetime | None
    certificate_number: str
    site_title: str
    logo_url: str | None = None


@dataclass(slots=True)
class LevelCertificateData:
    """Everything the renderer needs to draw a certification-level certificate."""

    user_name: str
    user_email: str
    level_name: str
    level_description: str | None
    course_titles: list[str]
    achieved_at: datetime
    expires_at: datetime | None
    certificate_number: str
    site_title: str
    logo_url: str | None = None
