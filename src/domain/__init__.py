"""Domain types for course completion and certification."""

from src.domain.access import AccessRule, AccessRuleType, has_access, matches
from src.domain.expiry import ExpiryPolicy, ExpiryType, InvalidExpiryPolicyError, compute_expiry
from src.domain.models import (
    CertificateData,
    CourseProgressSnapshot,
    LessonState,
    LevelCertificateData,
    QuizState,
    User,
)

__all__ = [
    "AccessRule",
    "AccessRuleType",
    "CertificateData",
    "CourseProgressSnapshot",
    "ExpiryPolicy",
    "ExpiryType",
    "InvalidExpiryPolicyError",
    "LessonState",
    "LevelCertificateData",
    "QuizState",
    "User",
    "compute_expiry",
    "has_access",
    "matches",
]
