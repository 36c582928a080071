"""Rollout decision engine.

Everything in this module is pure: no I/O, no clock reads unless the caller
omits ``now``. The service layer resolves flags, targeting, segments and prior
assignments before calling :func:`decide` and persists whatever it returns.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from numbers import Real
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..exceptions import InvalidArgumentError, validate_percentage
from ..logging_config import get_logger

logger = get_logger(__name__)

GRADUAL_ROLLOUT_WINDOW = timedelta(days=7)


class RolloutStrategy(StrEnum):
    PERCENTAGE = "percentage"
    SEGMENT = "segment"
    GRADUAL = "gradual"
    DEFAULT = "default"


class RuleOperator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


def as_utc(value: Optional[datetime | str]) -> Optional[datetime]:
    """Normalize to an aware UTC datetime; naive values are taken to be UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class FeatureFlag:
    name: str
    enabled: bool = False
    rollout_percentage: int = 0
    rollout_strategy: str = RolloutStrategy.PERCENTAGE.value
    environment: str = "production"
    id: Optional[int] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None


@dataclass
class User:
    id: str
    role: str = "user"
    segment: Optional[str] = None
    registration_date: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    email: Optional[str] = None


@dataclass
class CustomRule:
    field: str
    operator: str
    value: Any


@dataclass
class SegmentCriteria:
    role: Optional[List[str]] = None
    registration_date_after: Optional[datetime] = None
    registration_date_before: Optional[datetime] = None
    custom_rules: List[CustomRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SegmentCriteria":
        data = data or {}
        role = data.get("role")
        if isinstance(role, str):
            role = [role]
        return cls(
            role=list(role) if role is not None else None,
            registration_date_after=as_utc(data.get("registration_date_after")),
            registration_date_before=as_utc(data.get("registration_date_before")),
            custom_rules=[CustomRule(**r) for r in (data.get("custom_rules") or [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "registration_date_after": (
                self.registration_date_after.isoformat() if self.registration_date_after else None
            ),
            "registration_date_before": (
                self.registration_date_before.isoformat() if self.registration_date_before else None
            ),
            "custom_rules": [
                {"field": r.field, "operator": r.operator, "value": r.value}
                for r in self.custom_rules
            ],
        }


@dataclass
class Segment:
    id: Optional[int]
    name: str
    criteria: SegmentCriteria = field(default_factory=SegmentCriteria)
    description: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Targeting:
    feature_flag_id: Optional[int]
    segment_id: int
    enabled: bool = True
    rollout_percentage: int = 100
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Decision:
    assigned: bool
    reason: str


@dataclass(frozen=True)
class Assignment:
    user_id: str
    feature_flag_id: int
    assigned: bool
    reason: str
    assigned_at: Optional[datetime] = None
    id: Optional[int] = None

    def as_decision(self) -> Decision:
        return Decision(assigned=self.assigned, reason=self.reason)


def bucket(user_id: str) -> int:
    """Map a user id to a stable integer in [0, 100).

    MD5 of the UTF-8 id, first 32 bits read big-endian, modulo 100. This is
    part of the external contract: switching digests reshuffles every user
    that has no stored assignment yet.
    """
    digest = hashlib.md5(user_id.encode("utf-8")).hexdigest()  # nosec B324
    return int(digest[:8], 16) % 100


def is_in_rollout(user_id: str, percentage: int) -> bool:
    if percentage >= 100:
        return True
    if percentage <= 0:
        return False
    return bucket(user_id) < percentage


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    # numbers compare across int/float; every other kind (bool included) must match exactly
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def evaluate_custom_rule(user: User, rule: CustomRule) -> bool:
    value = (user.metadata or {}).get(rule.field)
    if rule.operator == RuleOperator.EQUALS:
        return _strict_equals(value, rule.value)
    if rule.operator == RuleOperator.NOT_EQUALS:
        return not _strict_equals(value, rule.value)
    if rule.operator == RuleOperator.CONTAINS:
        return isinstance(value, str) and isinstance(rule.value, str) and rule.value in value
    if rule.operator == RuleOperator.GREATER_THAN:
        return _is_number(value) and _is_number(rule.value) and value > rule.value
    if rule.operator == RuleOperator.LESS_THAN:
        return _is_number(value) and _is_number(rule.value) and value < rule.value
    logger.debug("custom_rule_unknown_operator", field=rule.field, operator=rule.operator)
    return False


def matches(user: User, criteria: SegmentCriteria) -> bool:
    # role allow-list
    if criteria.role is not None and user.role not in criteria.role:
        return False

    # registration bounds are inclusive; users without a date skip them
    registered = as_utc(user.registration_date)
    if registered is not None:
        after = criteria.registration_date_after
        if after is not None and registered < after:
            return False
        before = criteria.registration_date_before
        if before is not None and registered > before:
            return False

    for rule in criteria.custom_rules:
        if not evaluate_custom_rule(user, rule):
            return False
    return True


def gradual_percentage(
    flag: FeatureFlag,
    now: datetime,
    window: timedelta = GRADUAL_ROLLOUT_WINDOW,
) -> int:
    """Effective percentage of a gradual flag, ramped linearly over ``window``."""
    started = as_utc(flag.created_at) or now
    elapsed = (now - started).total_seconds()
    if elapsed <= 0:
        return 0
    window_seconds = window.total_seconds()
    progress = 1.0 if window_seconds <= 0 else min(elapsed / window_seconds, 1.0)
    return math.floor(progress * flag.rollout_percentage)


def _segment_decision(
    user: User, targeting: Iterable[Targeting], segments: Sequence[Segment]
) -> bool:
    by_id = {s.id: s for s in segments}
    # first enabled matching rule wins; list order is the only precedence
    for target in targeting:
        if not target.enabled:
            continue
        segment = by_id.get(target.segment_id)
        if segment is None:
            continue
        if matches(user, segment.criteria):
            return is_in_rollout(user.id, target.rollout_percentage)
    return False


def decide(
    flag: FeatureFlag,
    user: User,
    existing_assignment: Optional[Assignment] = None,
    *,
    targeting: Sequence[Targeting] = (),
    segments: Sequence[Segment] = (),
    now: Optional[datetime] = None,
    window: timedelta = GRADUAL_ROLLOUT_WINDOW,
) -> Decision:
    """Decide whether ``flag`` is on for ``user``.

    Order: master switch, then a stored assignment (returned verbatim), then
    the flag's rollout strategy. Unknown strategies fall through to the
    default branch, which only enables a flag rolled out to 100%.

    Raises:
        InvalidArgumentError: empty user id or a percentage outside [0, 100].
    """
    if not user.id:
        raise InvalidArgumentError("user id must be a non-empty string")
    validate_percentage(flag.rollout_percentage)

    if not flag.enabled:
        return Decision(assigned=False, reason="disabled")

    if existing_assignment is not None:
        return existing_assignment.as_decision()

    strategy = flag.rollout_strategy
    if strategy == RolloutStrategy.PERCENTAGE:
        return Decision(
            assigned=is_in_rollout(user.id, flag.rollout_percentage),
            reason=f"percentage_rollout_{flag.rollout_percentage}",
        )
    if strategy == RolloutStrategy.SEGMENT:
        for target in targeting:
            validate_percentage(target.rollout_percentage, "targeting.rollout_percentage")
        return Decision(
            assigned=_segment_decision(user, targeting, segments),
            reason="segment_based",
        )
    if strategy == RolloutStrategy.GRADUAL:
        current = as_utc(now) or datetime.now(timezone.utc)
        effective = gradual_percentage(flag, current, window)
        return Decision(assigned=is_in_rollout(user.id, effective), reason="gradual_rollout")

    return Decision(assigned=flag.rollout_percentage >= 100, reason="default")
