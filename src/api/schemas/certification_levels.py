from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, model_validator
from src.domain.access import AccessRule, AccessRuleType
from src.domain.expiry import ExpiryType


class ExpiryPolicyPayload(BaseModel):
    kind: ExpiryType = ExpiryType.NEVER
    value: int | None = None
    fixed_date: datetime | None = None


class LevelCourseItem(BaseModel):
    course_id: str
    title: str
    has_valid_certificate: bool


class AchievementItem(BaseModel):
    id: str
    achieved_at: datetime
    expires_at: datetime | None = None
    is_valid: bool
    certificate_number: str | None = None


class LevelItem(BaseModel):
    id: str
    name: str
    description: str | None = None
    position: int
    logo_url: str | None = None
    expiry_policy: ExpiryPolicyPayload
    courses: list[LevelCourseItem]
    completed_courses: int
    total_courses: int
    eligible: bool
    can_unlock: bool
    earliest_certificate_expiry: datetime | None = None
    achievement: AchievementItem | None = None


class LevelListResponse(BaseModel):
    levels: list[LevelItem]
    validity_changes: int = Field(0, description="Achievements whose validity flipped on this load")


class UnlockResponse(BaseModel):
    level_id: str
    achievement: AchievementItem


class ReconcileResponse(BaseModel):
    checked: int
    changed: int


class AccessRulePayload(BaseModel):
    rule_type: AccessRuleType
    group_id: str | None = None
    user_id: str | None = None

    @model_validator(mode="after")
    def check_target(self) -> AccessRulePayload:
        if self.rule_type is AccessRuleType.GROUP and not self.group_id:
            raise ValueError("group rules require group_id")
        if self.rule_type is AccessRuleType.USER and not self.user_id:
            raise ValueError("user rules require user_id")
        return self

    def to_rule(self) -> AccessRule:
        if self.rule_type is AccessRuleType.GROUP:
            return AccessRule.for_group(self.group_id)
        if self.rule_type is AccessRuleType.USER:
            return AccessRule.for_user(self.user_id)
        return AccessRule.everyone()


class LevelCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    position: int = 0
    is_active: bool = True
    logo_url: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    expiry_policy: ExpiryPolicyPayload = Field(default_factory=ExpiryPolicyPayload)
    course_ids: list[str] = Field(default_factory=list)
    access_rules: list[AccessRulePayload] = Field(default_factory=list)


class LevelCreateResponse(BaseModel):
    id: str
    name: str
    course_ids: list[str]
    rule_count: int
