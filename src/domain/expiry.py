"""Certificate expiry policies.

A policy is attached to a course or a certification level and turns a
reference instant (completion or achievement time) into an expiry instant.
"""

from __future__ import annotations

import calendar
import enum
from dataclasses import dataclass
from datetime import datetime, timedelta


class ExpiryType(str, enum.Enum):
    NEVER = "never"
    FIXED_DATE = "fixed_date"
    PERIOD_DAYS = "period_days"
    PERIOD_MONTHS = "period_months"
    PERIOD_YEARS = "period_years"

    @classmethod
    def period_types(cls) -> tuple[ExpiryType, ...]:
        return (cls.PERIOD_DAYS, cls.PERIOD_MONTHS, cls.PERIOD_YEARS)


class InvalidExpiryPolicyError(ValueError):
    """Raised when a policy is authored with missing or contradictory fields."""


@dataclass(frozen=True, slots=True)
class ExpiryPolicy:
    kind: ExpiryType = ExpiryType.NEVER
    value: int | None = None
    fixed_date: datetime | None = None

    @classmethod
    def never(cls) -> ExpiryPolicy:
        return cls(ExpiryType.NEVER)

    @classmethod
    def on_date(cls, fixed_date: datetime) -> ExpiryPolicy:
        return cls(ExpiryType.FIXED_DATE, fixed_date=fixed_date)

    @classmethod
    def days(cls, value: int | None) -> ExpiryPolicy:
        return cls(ExpiryType.PERIOD_DAYS, value=value)

    @classmethod
    def months(cls, value: int | None) -> ExpiryPolicy:
        return cls(ExpiryType.PERIOD_MONTHS, value=value)

    @classmethod
    def years(cls, value: int | None) -> ExpiryPolicy:
        return cls(ExpiryType.PERIOD_YEARS, value=value)

    @classmethod
    def from_columns(
        cls,
        kind: ExpiryType | str | None,
        value: int | None,
        fixed_date: datetime | None,
    ) -> ExpiryPolicy:
        """Build a policy from the three persisted columns of a course or level."""
        try:
            expiry_type = ExpiryType(kind) if kind is not None else ExpiryType.NEVER
        except ValueError:
            expiry_type = ExpiryType.NEVER
        return cls(expiry_type, value=value, fixed_date=fixed_date)

    def validate(self) -> ExpiryPolicy:
        """Strict check for the authoring boundary.

        ``compute_expiry`` stays lenient and treats malformed period policies as
        never expiring; admin input goes through here first.
        """
        if self.kind in ExpiryType.period_types():
            if self.value is None or self.value <= 0:
                raise InvalidExpiryPolicyError(f"{self.kind.value} requires a positive value")
            if self.fixed_date is not None:
                raise InvalidExpiryPolicyError(f"{self.kind.value} does not take a fixed date")
        elif self.kind is ExpiryType.FIXED_DATE:
            if self.fixed_date is None:
                raise InvalidExpiryPolicyError("fixed_date requires a date")
            if self.value is not None:
                raise InvalidExpiryPolicyError("fixed_date does not take a numeric value")
        elif self.value is not None or self.fixed_date is not None:
            raise InvalidExpiryPolicyError("never takes no value and no date")
        return self


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month addition, clamping to the last day of the target month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def compute_expiry(policy: ExpiryPolicy, reference: datetime) -> datetime | None:
    """Return the expiry instant for ``policy`` relative to ``reference``.

    ``None`` means the certificate never expires. A period policy without a
    positive value also yields ``None``. A fixed date is returned as-is, even
    when it already lies in the past.
    """
    if policy.kind is ExpiryType.FIXED_DATE:
        return policy.fixed_date

    if policy.kind not in ExpiryType.period_types():
        return None

    if policy.value is None or policy.value <= 0:
        return None

    if policy.kind is ExpiryType.PERIOD_DAYS:
        return reference + timedelta(days=policy.value)
    if policy.kind is ExpiryType.PERIOD_MONTHS:
        return add_months(reference, policy.value)
    return add_months(reference, policy.value * 12)
