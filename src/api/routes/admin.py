from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from src.api.deps import get_db_session, require_roles
from src.api.schemas.certification_levels import LevelCreateRequest, LevelCreateResponse
from src.core.auth import Role
from src.domain import User
from src.domain.expiry import ExpiryPolicy, InvalidExpiryPolicyError
from src.domain.services.certification_levels import (
    CertificationLevelService,
    UnknownCourseError,
)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post(
    "/certification-levels",
    response_model=LevelCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_certification_level(
    payload: LevelCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    _: User = Depends(require_roles(Role.ADMIN)),
) -> LevelCreateResponse:
    policy = ExpiryPolicy(
        payload.expiry_policy.kind,
        value=payload.expiry_policy.value,
        fixed_date=payload.expiry_policy.fixed_date,
    )
    service = CertificationLevelService(session)
    try:
        level = await service.create_level(
            name=payload.name,
            description=payload.description,
            position=payload.position,
            is_active=payload.is_active,
            logo_url=payload.logo_url,
            start_date=payload.start_date,
            end_date=payload.end_date,
            expiry_policy=policy,
            course_ids=payload.course_ids,
            access_rules=[rule.to_rule() for rule in payload.access_rules],
        )
    except InvalidExpiryPolicyError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    except UnknownCourseError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return LevelCreateResponse(
        id=level.id,
        name=level.name,
        course_ids=[link.course_id for link in level.courses],
        rule_count=len(payload.access_rules),
    )
