"""Approval request records and the per-request-locked store."""
from __future__ import annotations

from aumos_approval_chains.requests.models import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    ApprovalEntry,
    ApprovalRequest,
    Decision,
    EscalationRecord,
    RequestStatus,
    ResourceType,
)
from aumos_approval_chains.requests.store import RequestStore

__all__ = [
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "ApprovalEntry",
    "ApprovalRequest",
    "Decision",
    "EscalationRecord",
    "RequestStatus",
    "RequestStore",
    "ResourceType",
]
