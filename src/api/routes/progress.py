from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from src.api.deps import (
    get_current_user,
    get_db_session,
    get_eligibility_notifier,
    get_renderer,
)
from src.api.schemas.progress import (
    CompletionResponse,
    LessonProgressRequest,
    LessonProgressResponse,
    QuizAttemptRequest,
    QuizAttemptResponse,
)
from src.domain import User
from src.domain.services.certificates import (
    CertificateNumberAllocationError,
    CertificateService,
    CompletionResult,
    EligibilityNotifier,
    UserNotFoundError,
)
from src.domain.services.progress import (
    LessonNotFoundError,
    NotEnrolledError,
    ProgressService,
    QuizAttemptsExhaustedError,
    QuizNotFoundError,
)
from src.libs.pdf_renderer import CertificateRenderError, CertificateRendererProtocol

router = APIRouter(tags=["Progress"])


def _completion(result: CompletionResult) -> CompletionResponse:
    return CompletionResponse(
        completed=result.completed,
        issued=result.issued,
        certificate_id=result.certificate_id,
    )


def _issuance_error(exc: Exception) -> HTTPException:
    if isinstance(exc, CertificateRenderError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Certificate could not be rendered: {exc}",
        )
    if isinstance(exc, CertificateNumberAllocationError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("/courses/{course_id}/completion", response_model=CompletionResponse)
async def evaluate_course_completion(
    course_id: str,
    session: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    renderer: CertificateRendererProtocol = Depends(get_renderer),
    notifier: EligibilityNotifier = Depends(get_eligibility_notifier),
) -> CompletionResponse:
    """
    Check whether the caller has completed the course and issue its certificate.

    Safe to call repeatedly: once issued, the existing certificate id is returned
    with ``issued=false``.
    """
    service = CertificateService(session, renderer=renderer, notifier=notifier)
    try:
        result = await service.evaluate_and_issue(user_id=user.user_id, course_id=course_id)
    except (CertificateRenderError, CertificateNumberAllocationError, UserNotFoundError) as exc:
        raise _issuance_error(exc) from exc
    return _completion(result)


@router.post("/lessons/{lesson_id}/progress", response_model=LessonProgressResponse)
async def record_lesson_progress(
    lesson_id: str,
    payload: LessonProgressRequest,
    session: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    renderer: CertificateRendererProtocol = Depends(get_renderer),
    notifier: EligibilityNotifier = Depends(get_eligibility_notifier),
) -> LessonProgressResponse:
    service = ProgressService(
        session, certificates=CertificateService(session, renderer=renderer, notifier=notifier)
    )
    try:
        result = await service.record_lesson_progress(
            user_id=user.user_id, lesson_id=lesson_id, completed=payload.completed
        )
    except LessonNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except NotEnrolledError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except (CertificateRenderError, CertificateNumberAllocationError, UserNotFoundError) as exc:
        raise _issuance_error(exc) from exc

    return LessonProgressResponse(
        lesson_id=result.lesson_id,
        course_id=result.course_id,
        completed=result.completed,
        completion=_completion(result.completion),
    )


@router.post(
    "/quizzes/{quiz_id}/attempts",
    response_model=QuizAttemptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_quiz_attempt(
    quiz_id: str,
    payload: QuizAttemptRequest,
    session: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    renderer: CertificateRendererProtocol = Depends(get_renderer),
    notifier: EligibilityNotifier = Depends(get_eligibility_notifier),
) -> QuizAttemptResponse:
    service = ProgressService(
        session, certificates=CertificateService(session, renderer=renderer, notifier=notifier)
    )
    try:
        result = await service.record_quiz_attempt(
            user_id=user.user_id, quiz_id=quiz_id, percentage=payload.percentage
        )
    except QuizNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except NotEnrolledError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except QuizAttemptsExhaustedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (CertificateRenderError, CertificateNumberAllocationError, UserNotFoundError) as exc:
        raise _issuance_error(exc) from exc

    return QuizAttemptResponse(
        attempt_id=result.attempt_id,
        quiz_id=result.quiz_id,
        course_id=result.course_id,
        percentage=result.percentage,
        passed=result.passed,
        attempts_used=result.attempts_used,
        max_attempts=result.max_attempts,
        completion=_completion(result.completion),
    )
