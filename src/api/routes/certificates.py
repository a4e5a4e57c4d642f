from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from src.api.deps import get_current_user, get_db_session
from src.api.schemas.certificates import CertificateItem, CertificateListResponse
from src.domain import User
from src.domain.clock import is_still_valid, utcnow
from src.domain.services.certificates import (
    CertificateAccessDeniedError,
    CertificateNotFoundError,
    CertificateService,
)

router = APIRouter(prefix="/certificates", tags=["Certificates"])


@router.get("", response_model=CertificateListResponse)
async def list_certificates(
    session: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> CertificateListResponse:
    """List the caller's certificates, newest first."""
    now = utcnow()
    certificates = await CertificateService(session).list_for_user(user.user_id)
    return CertificateListResponse(
        certificates=[
            CertificateItem(
                id=cert.id,
                number=cert.number,
                course_id=cert.course_id,
                course_title=cert.course_title,
                instructor_name=cert.instructor_name,
                issued_at=cert.issued_at,
                completed_at=cert.completed_at,
                expires_at=cert.expires_at,
                is_valid=is_still_valid(cert.expires_at, now),
            )
            for cert in certificates
        ]
    )


@router.get("/{certificate_id}/download", response_class=Response)
async def download_certificate(
    certificate_id: str,
    session: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
) -> Response:
    service = CertificateService(session)
    try:
        certificate = await service.get_for_download(certificate_id=certificate_id, user=user)
    except CertificateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CertificateAccessDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return Response(
        content=certificate.pdf_data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{certificate.number}.pdf"'},
    )
