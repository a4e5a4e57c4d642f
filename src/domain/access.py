"""Access rules granting a certification level to users."""

from __future__ import annotations

import enum
from collections.abc import Collection, Iterable
from dataclasses import dataclass


class AccessRuleType(str, enum.Enum):
    ALL = "all"
    GROUP = "group"
    USER = "user"


@dataclass(frozen=True, slots=True)
class AccessRule:
    rule_type: AccessRuleType
    group_id: str | None = None
    user_id: str | None = None

    @classmethod
    def everyone(cls) -> AccessRule:
        return cls(AccessRuleType.ALL)

    @classmethod
    def for_group(cls, group_id: str) -> AccessRule:
        return cls(AccessRuleType.GROUP, group_id=group_id)

    @classmethod
    def for_user(cls, user_id: str) -> AccessRule:
        return cls(AccessRuleType.USER, user_id=user_id)


def matches(rule: AccessRule, user_id: str, group_ids: Collection[str]) -> bool:
    if rule.rule_type is AccessRuleType.ALL:
        return True
    if rule.rule_type is AccessRuleType.GROUP:
        return rule.group_id is not None and rule.group_id in group_ids
    if rule.rule_type is AccessRuleType.USER:
        return rule.user_id is not None and rule.user_id == user_id
    return False


def has_access(rules: Iterable[AccessRule], user_id: str, group_ids: Collection[str]) -> bool:
    """True when any rule grants access. No rules means nobody has access."""
    return any(matches(rule, user_id, group_ids) for rule in rules)
