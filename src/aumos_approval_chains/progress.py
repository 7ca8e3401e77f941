"""Read-only projections over requests and their chains."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone

from aumos_approval_chains.chains.schema import ApprovalChain
from aumos_approval_chains.requests.models import ApprovalRequest, RequestStatus


@dataclass(frozen=True)
class ApprovalProgress:
    """How far a request has travelled through its chain.

    ``percent_complete`` counts every finished level as a whole and the
    active level by the share of its quorum already reached.
    """

    current_level: int
    total_levels: int
    current_level_name: str
    approvals_at_current_level: int
    required_approvals: int
    percent_complete: int

    def to_dict(self) -> dict[str, object]:
        return {
            "current_level": self.current_level,
            "total_levels": self.total_levels,
            "current_level_name": self.current_level_name,
            "approvals_at_current_level": self.approvals_at_current_level,
            "required_approvals": self.required_approvals,
            "percent_complete": self.percent_complete,
        }


def compute_progress(request: ApprovalRequest, chain: ApprovalChain) -> ApprovalProgress | None:
    """Return the progress of ``request`` or ``None`` if its level is unknown.

    At level 2 of 3 with one of two approvals in, the request is
    ``round(((2 - 1) + 1 / 2) / 3 * 100) == 50`` percent complete.
    """
    level = chain.level(request.current_level)
    if level is None:
        return None
    approvals = len(request.approvals_at(request.current_level))
    completed_levels = request.current_level - 1
    level_share = approvals / level.required_approvals
    # Half-up rounding; round() would send 12.5 to 12.
    percent = math.floor((completed_levels + level_share) / chain.total_levels * 100 + 0.5)
    return ApprovalProgress(
        current_level=request.current_level,
        total_levels=chain.total_levels,
        current_level_name=level.name,
        approvals_at_current_level=approvals,
        required_approvals=level.required_approvals,
        percent_complete=percent,
    )


def user_can_act(
    request: ApprovalRequest,
    chain: ApprovalChain,
    user_id: str,
    user_role: str | None = None,
) -> bool:
    """Return ``True`` when ``user_id`` may vote on ``request`` right now.

    The request must be open, the active level must list the user or the
    user's role, and the user must not have voted at that level already.
    """
    if not request.is_open:
        return False
    level = chain.level(request.current_level)
    if level is None:
        return False
    return level.allows(user_id, user_role) and not request.has_acted(user_id)


def deadline_sort_key(request: ApprovalRequest) -> tuple[int, float]:
    """Sort key: soonest deadline first, undated requests last, newest first."""
    if request.deadline is not None:
        return (0, request.deadline.timestamp())
    created = request.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (1, -created.timestamp())


def is_overdue(request: ApprovalRequest, now: datetime) -> bool:
    """Return ``True`` for a pending request whose deadline has passed."""
    return (
        request.status == RequestStatus.PENDING
        and request.deadline is not None
        and now > request.deadline
    )
