"""Approval chain definitions: schema, built-in chains and the registry."""
from __future__ import annotations

from aumos_approval_chains.chains.defaults import DEFAULT_CHAINS, build_default_chains
from aumos_approval_chains.chains.registry import ChainRegistry
from aumos_approval_chains.chains.schema import (
    ApprovalChain,
    ApprovalLevel,
    ChainSpec,
    ChainUpdate,
    EscalationRule,
    EscalationTarget,
    NextLevel,
    NoEscalation,
    NotificationSettings,
    NotifyRole,
    NotifyUser,
)

__all__ = [
    "DEFAULT_CHAINS",
    "ApprovalChain",
    "ApprovalLevel",
    "ChainRegistry",
    "ChainSpec",
    "ChainUpdate",
    "EscalationRule",
    "EscalationTarget",
    "NextLevel",
    "NoEscalation",
    "NotificationSettings",
    "NotifyRole",
    "NotifyUser",
    "build_default_chains",
]
