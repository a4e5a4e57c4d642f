from __future__ import annotations

from pydantic import BaseModel, Field


class CompletionResponse(BaseModel):
    completed: bool
    issued: bool = Field(False, description="True only when this call created the certificate")
    certificate_id: str | None = None


class LessonProgressRequest(BaseModel):
    completed: bool = True


class LessonProgressResponse(BaseModel):
    lesson_id: str
    course_id: str
    completed: bool
    completion: CompletionResponse


class QuizAttemptRequest(BaseModel):
    percentage: float = Field(..., ge=0, le=100, description="Score achieved, in percent")


class QuizAttemptResponse(BaseModel):
    attempt_id: str
    quiz_id: str
    course_id: str
    percentage: float
    passed: bool
    attempts_used: int
    max_attempts: int = Field(..., description="0 means unlimited")
    completion: CompletionResponse
