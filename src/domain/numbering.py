from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from src.core.config import Settings


@dataclass(frozen=True, slots=True)
class CertificateNumbering:
    """Year-scoped sequential numbers of the form ``PREFIX-YYYY-NNNNN``."""

    prefix: str
    max_attempts: int = 3

    @classmethod
    def for_courses(cls, settings: Settings) -> CertificateNumbering:
        return cls(settings.certificate_number_prefix, settings.certificate_number_max_attempts)

    @classmethod
    def for_levels(cls, settings: Settings) -> CertificateNumbering:
        return cls(
            settings.level_certificate_number_prefix, settings.certificate_number_max_attempts
        )

    def format(self, year: int, sequence: int) -> str:
        return f"{self.prefix}-{year}-{sequence:05d}"

    def year_prefix(self, year: int) -> str:
        return f"{self.prefix}-{year}-"

    def next_after(self, year: int, numbers: Iterable[str]) -> int:
        """Sequence following the highest well-formed number already used in ``year``."""
        head = self.year_prefix(year)
        suffixes = [
            int(number[len(head) :])
            for number in numbers
            if number.startswith(head) and number[len(head) :].isdigit()
        ]
        return max(suffixes, default=0) + 1
