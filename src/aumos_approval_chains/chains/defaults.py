"""Built-in approval chains registered on every new engine.

Three chains ship so the engine is usable before any configuration:

- ``ticket-approval``: one level (Tech Lead)
- ``prd-approval``: Tech Lead -> Product Manager
- ``release-approval``: QA Lead -> Tech Lead -> Product Manager -> Director
"""
from __future__ import annotations

from datetime import datetime

from aumos_approval_chains.chains.schema import ApprovalChain, ChainSpec

_NOTIFY_ALL: dict[str, object] = {
    "notify_on_create": True,
    "notify_on_approve": True,
    "notify_on_reject": True,
    "notify_on_escalate": True,
    "email_enabled": False,
    "slack_enabled": False,
}

TICKET_APPROVAL_CHAIN: dict[str, object] = {
    "name": "Ticket Approval",
    "description": "Single-level approval for tickets",
    "levels": [
        {
            "order": 1,
            "name": "Tech Lead",
            "approver_roles": ["admin", "editor"],
            "required_approvals": 1,
            "timeout_hours": 24,
        },
    ],
    "notification_settings": _NOTIFY_ALL,
}

PRD_APPROVAL_CHAIN: dict[str, object] = {
    "name": "PRD Approval",
    "description": "Two-level approval: Tech Lead -> PM",
    "levels": [
        {
            "order": 1,
            "name": "Tech Lead",
            "approver_roles": ["admin", "editor"],
            "required_approvals": 1,
            "timeout_hours": 48,
            "escalate_to": "next_level",
        },
        {
            "order": 2,
            "name": "Product Manager",
            "approver_roles": ["admin"],
            "required_approvals": 1,
            "timeout_hours": 72,
            "escalate_to": "admin",
        },
    ],
    "escalation_rules": [
        {"trigger_after_hours": 72, "escalate_to": "admin", "notify_on_escalation": True},
    ],
    "notification_settings": _NOTIFY_ALL,
}

RELEASE_APPROVAL_CHAIN: dict[str, object] = {
    "name": "Release Approval",
    "description": "Four-level approval: QA -> Tech Lead -> PM -> Director",
    "levels": [
        {
            "order": 1,
            "name": "QA Lead",
            "approver_roles": ["editor"],
            "required_approvals": 1,
            "timeout_hours": 24,
            "escalate_to": "next_level",
        },
        {
            "order": 2,
            "name": "Tech Lead",
            "approver_roles": ["admin", "editor"],
            "required_approvals": 1,
            "timeout_hours": 24,
            "escalate_to": "next_level",
        },
        {
            "order": 3,
            "name": "Product Manager",
            "approver_roles": ["admin"],
            "required_approvals": 1,
            "timeout_hours": 48,
            "escalate_to": "next_level",
        },
        {
            "order": 4,
            "name": "Director",
            "approver_roles": ["admin"],
            "required_approvals": 1,
            "timeout_hours": 72,
            "escalate_to": "admin",
        },
    ],
    "escalation_rules": [
        {"trigger_after_hours": 96, "escalate_to": "admin", "notify_on_escalation": True},
    ],
    "notification_settings": _NOTIFY_ALL,
}

DEFAULT_CHAINS: dict[str, dict[str, object]] = {
    "ticket-approval": TICKET_APPROVAL_CHAIN,
    "prd-approval": PRD_APPROVAL_CHAIN,
    "release-approval": RELEASE_APPROVAL_CHAIN,
}


def build_default_chains(now: datetime) -> list[ApprovalChain]:
    """Return fresh :class:`ApprovalChain` objects for the built-in chains.

    Each call validates the templates again, so engines never share
    mutable chain objects.
    """
    chains: list[ApprovalChain] = []
    for chain_id, template in DEFAULT_CHAINS.items():
        spec = ChainSpec.model_validate(template)
        chains.append(
            ApprovalChain(
                **spec.model_dump(),
                id=chain_id,
                created_at=now,
                updated_at=now,
            )
        )
    return chains
