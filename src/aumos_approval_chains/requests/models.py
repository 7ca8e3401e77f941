"""Approval request records.

An :class:`ApprovalRequest` tracks one resource instance through a chain.
Its ``approvals`` and ``escalation_history`` lists are append-only: the
engine adds entries but never removes or rewrites them.

Lifecycle::

    pending ──approve (quorum, more levels)──► pending (next level)
       │  └──approve (quorum, last level)────► approved
       ├──reject───────────────────────────► rejected
       ├──escalate─────────────────────────► escalated
       └──cancel───────────────────────────► cancelled

    escalated ──approve (quorum)──► pending (next level) | approved
              ├──reject──────────► rejected
              └──cancel──────────► cancelled
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class RequestStatus(str, Enum):
    """Lifecycle status of an approval request."""

    PENDING = "pending"
    ESCALATED = "escalated"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


OPEN_STATUSES: frozenset[RequestStatus] = frozenset({RequestStatus.PENDING, RequestStatus.ESCALATED})
TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset(
    {RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED}
)


class Decision(str, Enum):
    """A single approver's vote."""

    APPROVED = "approved"
    REJECTED = "rejected"


class ResourceType(str, Enum):
    """Kinds of resources whose state changes are gated by a chain."""

    TICKET = "ticket"
    PRD = "prd"
    RELEASE = "release"
    PROJECT = "project"
    EPIC = "epic"
    DEPLOYMENT = "deployment"


def _parse_ts(value: object) -> datetime | None:
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    # Stored timestamps without an offset are UTC.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class ApprovalEntry:
    """One vote cast on a request.

    Attributes
    ----------
    user_id:
        The voter.
    decision:
        ``approved`` or ``rejected``.
    level_order:
        The level the vote counts toward.  Fixed at creation.
    timestamp:
        UTC time the vote was cast.
    user_email:
        Optional contact address of the voter.
    comment:
        Optional free-text rationale.
    """

    user_id: str
    decision: Decision
    level_order: int
    timestamp: datetime
    user_email: str | None = None
    comment: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "decision": self.decision.value,
            "level_order": self.level_order,
            "timestamp": self.timestamp.isoformat(),
            "user_email": self.user_email,
            "comment": self.comment,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> ApprovalEntry:
        return cls(
            user_id=str(data["user_id"]),
            decision=Decision(data["decision"]),
            level_order=int(data["level_order"]),  # type: ignore[arg-type]
            timestamp=_parse_ts(data["timestamp"]),  # type: ignore[arg-type]
            user_email=data.get("user_email"),  # type: ignore[arg-type]
            comment=data.get("comment"),  # type: ignore[arg-type]
        )


@dataclass(frozen=True)
class EscalationRecord:
    """One escalation of a request.

    ``to_level`` equals ``from_level`` when the escalation target did not
    move the request (e.g. it was routed to a role).  ``target`` describes
    the resolved target: ``"next_level"``, ``"role:<name>"``,
    ``"user:<id>"`` or ``"none"``.
    """

    from_level: int
    to_level: int
    reason: str
    timestamp: datetime
    target: str = "none"

    def to_dict(self) -> dict[str, object]:
        return {
            "from_level": self.from_level,
            "to_level": self.to_level,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "target": self.target,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> EscalationRecord:
        return cls(
            from_level=int(data["from_level"]),  # type: ignore[arg-type]
            to_level=int(data["to_level"]),  # type: ignore[arg-type]
            reason=str(data["reason"]),
            timestamp=_parse_ts(data["timestamp"]),  # type: ignore[arg-type]
            target=str(data.get("target", "none")),
        )


@dataclass
class ApprovalRequest:
    """A single approval process for one resource instance.

    Attributes
    ----------
    id:
        Unique request identifier.
    chain_id:
        The chain the request runs through.
    resource_type:
        Kind of resource being gated (usually a :class:`ResourceType` value).
    resource_id:
        Identifier of the gated resource.
    requested_by:
        User who opened the request.
    created_at:
        UTC creation time.
    current_level:
        ``order`` of the active level; always a level of the chain.
    status:
        Current lifecycle status.
    approvals:
        Append-only list of votes.
    escalation_history:
        Append-only list of escalations.
    deadline:
        When the active level times out.  ``None`` if it has no timeout.
    completed_at:
        Set once the request is approved, rejected or cancelled.
    version:
        Incremented on every mutation.
    """

    id: str
    chain_id: str
    resource_type: str
    resource_id: str
    requested_by: str
    created_at: datetime
    current_level: int = 1
    status: RequestStatus = RequestStatus.PENDING
    approvals: list[ApprovalEntry] = field(default_factory=list)
    escalation_history: list[EscalationRecord] = field(default_factory=list)
    resource_name: str | None = None
    requested_by_email: str | None = None
    deadline: datetime | None = None
    completed_at: datetime | None = None
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def approvals_at(self, level_order: int) -> list[ApprovalEntry]:
        """Return the approving votes counted toward ``level_order``."""
        return [
            entry
            for entry in self.approvals
            if entry.level_order == level_order and entry.decision == Decision.APPROVED
        ]

    def has_acted(self, user_id: str, level_order: int | None = None) -> bool:
        """Return ``True`` if ``user_id`` voted at ``level_order`` (default: current level)."""
        level = self.current_level if level_order is None else level_order
        return any(e.user_id == user_id and e.level_order == level for e in self.approvals)

    def snapshot(self) -> ApprovalRequest:
        """Return a deep copy safe to hand outside the store."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, object]:
        """Serialise to a JSON-compatible dict."""
        return {
            "id": self.id,
            "chain_id": self.chain_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "current_level": self.current_level,
            "approvals": [entry.to_dict() for entry in self.approvals],
            "status": self.status.value,
            "requested_by": self.requested_by,
            "requested_by_email": self.requested_by_email,
            "deadline": _format_ts(self.deadline),
            "escalation_history": [record.to_dict() for record in self.escalation_history],
            "created_at": self.created_at.isoformat(),
            "completed_at": _format_ts(self.completed_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> ApprovalRequest:
        """Reconstruct a request from :meth:`to_dict` output."""
        approvals = data.get("approvals") or []
        history = data.get("escalation_history") or []
        return cls(
            id=str(data["id"]),
            chain_id=str(data["chain_id"]),
            resource_type=str(data["resource_type"]),
            resource_id=str(data["resource_id"]),
            requested_by=str(data["requested_by"]),
            created_at=_parse_ts(data["created_at"]),  # type: ignore[arg-type]
            current_level=int(data.get("current_level", 1)),  # type: ignore[arg-type]
            status=RequestStatus(data.get("status", RequestStatus.PENDING.value)),
            approvals=[ApprovalEntry.from_dict(e) for e in approvals],  # type: ignore[union-attr]
            escalation_history=[EscalationRecord.from_dict(r) for r in history],  # type: ignore[union-attr]
            resource_name=data.get("resource_name"),  # type: ignore[arg-type]
            requested_by_email=data.get("requested_by_email"),  # type: ignore[arg-type]
            deadline=_parse_ts(data.get("deadline")),
            completed_at=_parse_ts(data.get("completed_at")),
            version=int(data.get("version", 0)),  # type: ignore[arg-type]
        )
