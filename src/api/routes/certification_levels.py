from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from src.api.deps import get_current_user, get_db_session, get_renderer
from src.api.schemas.certification_levels import (
    AchievementItem,
    ExpiryPolicyPayload,
    LevelCourseItem,
    LevelItem,
    LevelListResponse,
    ReconcileResponse,
    UnlockResponse,
)
from src.domain import User
from src.domain.services.certification_levels import (
    AchievementView,
    CertificationLevelService,
    LevelCertificateMissingError,
    LevelCertificateNumberAllocationError,
    LevelNotAchievedError,
    LevelView,
    UnlockFailure,
)
from src.domain.services.level_validity import LevelValidityService
from src.libs.pdf_renderer import CertificateRenderError, CertificateRendererProtocol

router = APIRouter(prefix="/certification-levels", tags=["Certification Levels"])

_UNLOCK_FAILURE_STATUS = {
    UnlockFailure.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    UnlockFailure.NOT_ACCESSIBLE: status.HTTP_403_FORBIDDEN,
    UnlockFailure.ALREADY_ACHIEVED: status.HTTP_409_CONFLICT,
    UnlockFailure.NOT_ELIGIBLE: status.HTTP_400_BAD_REQUEST,
}


def _achievement(view: AchievementView) -> AchievementItem:
    return AchievementItem(
        id=view.id,
        achieved_at=view.achieved_at,
        expires_at=view.expires_at,
        is_valid=view.is_valid,
        certificate_number=view.certificate_number,
    )


def _level_item(view: LevelView) -> LevelItem:
    return LevelItem(
        id=view.level_id,
        name=view.name,
        description=view.description,
        position=view.position,
        logo_url=view.logo_url,
        expiry_policy=ExpiryPolicyPayload(
            kind=view.expiry_policy.kind,
            value=view.expiry_policy.value,
            fixed_date=view.expiry_policy.fixed_date,
        ),
        courses=[
            LevelCourseItem(
                course_id=course.course_id,
                title=course.title,
                has_valid_certificate=course.has_valid_certificate,
            )
            for course in view.courses
        ],
        completed_courses=view.completed_courses,
        total_courses=view.total_courses,
        eligible=view.eligible,
        can_unlock=view.can_unlock,
        earliest_certificate_expiry=view.earliest_certificate_expiry,
        achievement=_achievement(view.achievement) if view.achievement else None,
    )


@router.get("", response_model=LevelListResponse)
async def list_levels(
    session: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    renderer: CertificateRendererProtocol = Depends(get_renderer),
) -> LevelListResponse:
    """
    Certification levels the caller can see, with progress and achievement.

    Achievement validity is reconciled first so expired certificates are
    reflected immediately.
    """
    report = await LevelValidityService(session).reconcile_validity(user_id=user.user_id)
    service = CertificationLevelService(session, renderer=renderer)
    views = await service.list_accessible_levels(user_id=user.user_id)
    return LevelListResponse(
        levels=[_level_item(view) for view in views],
        validity_changes=report.changed,
    )


@router.post("/validity/reconcile", response_model=ReconcileResponse)
async def reconcile_validity(
    session: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> ReconcileResponse:
    report = await LevelValidityService(session).reconcile_validity(user_id=user.user_id)
    return ReconcileResponse(checked=report.checked, changed=report.changed)


@router.post(
    "/{level_id}/unlock",
    response_model=UnlockResponse,
    status_code=status.HTTP_201_CREATED,
)
async def unlock_level(
    level_id: str,
    session: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    renderer: CertificateRendererProtocol = Depends(get_renderer),
) -> UnlockResponse:
    """Award the level to the caller once every required course has a valid certificate."""
    service = CertificationLevelService(session, renderer=renderer)
    try:
        result = await service.unlock(user_id=user.user_id, level_id=level_id)
    except CertificateRenderError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Certificate could not be rendered: {exc}",
        ) from exc
    except LevelCertificateNumberAllocationError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc

    if not result.ok:
        detail: str | dict = result.reason.value
        if result.reason is UnlockFailure.NOT_ELIGIBLE:
            detail = {"reason": result.reason.value, "missing_courses": result.missing_courses}
        raise HTTPException(status_code=_UNLOCK_FAILURE_STATUS[result.reason], detail=detail)

    return UnlockResponse(level_id=level_id, achievement=_achievement(result.achievement))


@router.get("/{level_id}/certificate", response_class=Response)
async def download_level_certificate(
    level_id: str,
    session: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    renderer: CertificateRendererProtocol = Depends(get_renderer),
) -> Response:
    service = CertificationLevelService(session, renderer=renderer)
    try:
        user_level = await service.get_level_certificate(user_id=user.user_id, level_id=level_id)
    except (LevelNotAchievedError, LevelCertificateMissingError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    filename = user_level.certificate_number or f"certification-{level_id}"
    return Response(
        content=user_level.pdf_data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}.pdf"'},
    )
