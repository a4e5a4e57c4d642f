from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CertificateItem(BaseModel):
    id: str
    number: str
    course_id: str
    course_title: str
    instructor_name: str
    issued_at: datetime
    completed_at: datetime
    expires_at: datetime | None = None
    is_valid: bool


class CertificateListResponse(BaseModel):
    certificates: list[CertificateItem]
