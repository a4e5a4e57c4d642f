"""Domain services."""

from src.domain.services.certificates import (
    CertificateService,
    CompletionResult,
)
from src.domain.services.certification_levels import (
    CertificationLevelService,
    EligibilityRefreshScheduler,
    LevelView,
    UnlockFailure,
    UnlockResult,
)
from src.domain.services.level_validity import (
    LevelValidityService,
    ReconcileReport,
)
from src.domain.services.progress import ProgressService

__all__ = [
    "CertificateService",
    "CertificationLevelService",
    "CompletionResult",
    "EligibilityRefreshScheduler",
    "LevelValidityService",
    "LevelView",
    "ProgressService",
    "ReconcileReport",
    "UnlockFailure",
    "UnlockResult",
]
