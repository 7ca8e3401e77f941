"""Approval chain schema: Pydantic v2 models for chain definitions.

A chain is an ordered list of approval levels.  Each level names who may
approve (roles and/or explicit user ids), how many approvals it needs
(the quorum), how long it may stay open, and where a request goes when it
is escalated.

Example
-------
>>> from aumos_approval_chains.chains.schema import ChainSpec
>>> spec = ChainSpec.model_validate({
...     "name": "Design Review",
...     "levels": [
...         {"order": 1, "name": "Peer", "approver_roles": ["editor"], "timeout_hours": 24,
...          "escalate_to": "next_level"},
...         {"order": 2, "name": "Lead", "approver_roles": ["admin"], "escalate_to": "admin"},
...     ],
... })
>>> spec.levels[0].escalate_to.kind
'next_level'
>>> spec.levels[1].escalate_to.role
'admin'
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Annotated, Literal, Union

import yaml
from pydantic import BaseModel, Field, field_serializer, model_validator


# ---------------------------------------------------------------------------
# Escalation targets
# ---------------------------------------------------------------------------


class NextLevel(BaseModel):
    """Escalation advances the request to the following level."""

    model_config = {"frozen": True}

    kind: Literal["next_level"] = "next_level"

    def describe(self) -> str:
        return "next_level"


class NotifyRole(BaseModel):
    """Escalation is routed to everyone holding ``role`` (e.g. ``"admin"``)."""

    model_config = {"frozen": True}

    kind: Literal["notify_role"] = "notify_role"
    role: str = Field(min_length=1)

    def describe(self) -> str:
        return f"role:{self.role}"


class NotifyUser(BaseModel):
    """Escalation is routed to one named user."""

    model_config = {"frozen": True}

    kind: Literal["notify_user"] = "notify_user"
    user_id: str = Field(min_length=1)

    def describe(self) -> str:
        return f"user:{self.user_id}"


class NoEscalation(BaseModel):
    """Escalation is recorded but routed nowhere."""

    model_config = {"frozen": True}

    kind: Literal["none"] = "none"

    def describe(self) -> str:
        return "none"


EscalationTarget = Annotated[
    Union[NextLevel, NotifyRole, NotifyUser, NoEscalation],
    Field(discriminator="kind"),
]


def coerce_escalation_target(value: object, user_id: object = None) -> object:
    """Translate the legacy string form of an escalation target.

    ``"next_level"`` maps to :class:`NextLevel`, ``"specific_user"`` to
    :class:`NotifyUser` (using ``user_id``), ``None``/``"none"`` to
    :class:`NoEscalation` and any other string to a :class:`NotifyRole`.
    Dicts and model instances are returned untouched.
    """
    if value is None or value == "none":
        return {"kind": "none"}
    if not isinstance(value, str):
        return value
    if value == "next_level":
        return {"kind": "next_level"}
    if value == "specific_user":
        return {"kind": "notify_user", "user_id": user_id or ""}
    return {"kind": "notify_role", "role": value}


def _coerce_target_field(data: object, field_name: str, user_field: str) -> object:
    if not isinstance(data, dict) or field_name not in data:
        return data
    data = dict(data)
    data[field_name] = coerce_escalation_target(data[field_name], data.pop(user_field, None))
    return data


# ---------------------------------------------------------------------------
# Levels and chain-wide settings
# ---------------------------------------------------------------------------


class ApprovalLevel(BaseModel):
    """One stage of an approval chain.

    Attributes
    ----------
    order:
        Position of the level in its chain, starting at 1.
    name:
        Display name (e.g. ``"Tech Lead"``).
    approver_roles:
        Role tags whose holders may vote at this level.
    approver_user_ids:
        Users who may vote at this level regardless of role.
    required_approvals:
        Quorum of distinct approving votes needed to leave the level.
    timeout_hours:
        Hours the level may stay open before timeout escalation.
        ``None`` means the level never times out.
    escalate_to:
        Where the request goes when escalated from this level.
    """

    order: int = Field(ge=1)
    name: str = Field(min_length=1)
    approver_roles: set[str] = Field(default_factory=set)
    approver_user_ids: set[str] = Field(default_factory=set)
    required_approvals: int = Field(default=1, ge=1)
    timeout_hours: float | None = Field(default=None, gt=0)
    escalate_to: EscalationTarget = Field(default_factory=NoEscalation)

    @model_validator(mode="before")
    @classmethod
    def _legacy_escalate_to(cls, data: object) -> object:
        return _coerce_target_field(data, "escalate_to", "escalate_to_user_id")

    @field_serializer("approver_roles", "approver_user_ids")
    def _sorted(self, values: set[str]) -> list[str]:
        return sorted(values)

    @property
    def timeout(self) -> timedelta | None:
        """The level timeout as a ``timedelta``, or ``None``."""
        if self.timeout_hours is None:
            return None
        return timedelta(hours=self.timeout_hours)

    def allows(self, user_id: str, role: str | None = None) -> bool:
        """Return ``True`` when ``user_id`` (or its ``role``) may vote here."""
        if user_id in self.approver_user_ids:
            return True
        return role is not None and role in self.approver_roles


class EscalationRule(BaseModel):
    """Chain-wide fallback escalation triggered after a fixed number of hours."""

    trigger_after_hours: float = Field(gt=0)
    escalate_to: EscalationTarget = Field(default_factory=NoEscalation)
    notify_on_escalation: bool = True

    @model_validator(mode="before")
    @classmethod
    def _legacy_escalate_to(cls, data: object) -> object:
        return _coerce_target_field(data, "escalate_to", "target_user_id")


class NotificationSettings(BaseModel):
    """Notification flags carried by a chain.  Delivery happens elsewhere."""

    notify_on_create: bool = True
    notify_on_approve: bool = True
    notify_on_reject: bool = True
    notify_on_escalate: bool = True
    email_enabled: bool = False
    slack_enabled: bool = False
    slack_webhook_url: str | None = None


# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------


class ChainSpec(BaseModel):
    """Caller-supplied chain definition, before an id is assigned.

    Levels are sorted by ``order`` and must be numbered ``1..N`` with no
    gaps or duplicates.
    """

    name: str = Field(min_length=1)
    description: str = ""
    levels: list[ApprovalLevel] = Field(min_length=1)
    escalation_rules: list[EscalationRule] = Field(default_factory=list)
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)

    @model_validator(mode="after")
    def _check_level_orders(self) -> "ChainSpec":
        orders = [level.order for level in self.levels]
        duplicates = sorted({o for o in orders if orders.count(o) > 1})
        if duplicates:
            raise ValueError(f"duplicate level orders: {duplicates}")
        expected = list(range(1, len(orders) + 1))
        if sorted(orders) != expected:
            raise ValueError(
                f"level orders must be numbered 1..{len(orders)} without gaps, got {sorted(orders)}"
            )
        self.levels = sorted(self.levels, key=lambda level: level.order)
        return self

    def level(self, order: int) -> ApprovalLevel | None:
        """Return the level with ``order``, or ``None``."""
        for level in self.levels:
            if level.order == order:
                return level
        return None

    def next_level(self, order: int) -> ApprovalLevel | None:
        """Return the level following ``order``, or ``None`` at the end."""
        return self.level(order + 1)

    @property
    def first_level(self) -> ApprovalLevel:
        return self.levels[0]

    @property
    def total_levels(self) -> int:
        return len(self.levels)


class ApprovalChain(ChainSpec):
    """A registered chain: a :class:`ChainSpec` with identity and timestamps."""

    id: str = Field(min_length=1)
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, object]:
        """Serialise to a JSON-compatible dict."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ApprovalChain":
        return cls.model_validate(data)

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False, allow_unicode=True)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "ApprovalChain":
        data: dict[str, object] = yaml.safe_load(yaml_str) or {}
        return cls.from_dict(data)


class ChainUpdate(BaseModel):
    """Explicit set of chain fields an administrative edit may change.

    Only the fields the caller actually sets are applied; unset fields and
    fields explicitly set to ``None`` leave the chain untouched.
    """

    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    levels: list[ApprovalLevel] | None = Field(default=None, min_length=1)
    escalation_rules: list[EscalationRule] | None = None
    notification_settings: NotificationSettings | None = None

    def changes(self) -> dict[str, object]:
        """Return the explicitly set, non-``None`` fields as plain data."""
        return {
            name: value
            for name, value in self.model_dump(include=self.model_fields_set).items()
            if value is not None
        }
