"""aumos-approval-chains: Multi-level approval workflows for gated resource changes.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import aumos_approval_chains as chains
>>> chains.__version__
'0.1.0'
>>> engine = chains.ApprovalChainEngine()
>>> request = engine.create_request("ticket-approval", "ticket", "T-17", requested_by="alice")
>>> engine.approve(request.id, "lead-1").status
<RequestStatus.APPROVED: 'approved'>
"""
from __future__ import annotations

__version__: str = "0.1.0"

from aumos_approval_chains.engine import ApprovalChainEngine

# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------
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
from aumos_approval_chains.chains.defaults import DEFAULT_CHAINS
from aumos_approval_chains.chains.registry import ChainRegistry

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
from aumos_approval_chains.requests.models import (
    ApprovalEntry,
    ApprovalRequest,
    Decision,
    EscalationRecord,
    RequestStatus,
    ResourceType,
)
from aumos_approval_chains.progress import ApprovalProgress

# ---------------------------------------------------------------------------
# Persistence, audit, scheduling and configuration
# ---------------------------------------------------------------------------
from aumos_approval_chains.persistence import (
    InMemoryPersistence,
    JsonFilePersistence,
    PersistedState,
    PersistenceAdapter,
    PersistenceWriter,
)
from aumos_approval_chains.audit import TransitionLog
from aumos_approval_chains.scheduler import TimeoutScheduler
from aumos_approval_chains.config import ConfigLoader, EngineConfig

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
from aumos_approval_chains.errors import (
    ApprovalChainError,
    ChainInUseError,
    ChainNotFoundError,
    ChainValidationError,
    DuplicateVoteError,
    InvalidStateError,
    LevelNotFoundError,
    NotFoundError,
    PersistenceError,
    RequestNotFoundError,
)

__all__ = [
    "__version__",
    # Engine
    "ApprovalChainEngine",
    # Chains
    "ApprovalChain",
    "ApprovalLevel",
    "ChainRegistry",
    "ChainSpec",
    "ChainUpdate",
    "DEFAULT_CHAINS",
    "EscalationRule",
    "EscalationTarget",
    "NextLevel",
    "NoEscalation",
    "NotificationSettings",
    "NotifyRole",
    "NotifyUser",
    # Requests
    "ApprovalEntry",
    "ApprovalProgress",
    "ApprovalRequest",
    "Decision",
    "EscalationRecord",
    "RequestStatus",
    "ResourceType",
    # Persistence, audit, scheduling and configuration
    "ConfigLoader",
    "EngineConfig",
    "InMemoryPersistence",
    "JsonFilePersistence",
    "PersistedState",
    "PersistenceAdapter",
    "PersistenceWriter",
    "TimeoutScheduler",
    "TransitionLog",
    # Errors
    "ApprovalChainError",
    "ChainInUseError",
    "ChainNotFoundError",
    "ChainValidationError",
    "DuplicateVoteError",
    "InvalidStateError",
    "LevelNotFoundError",
    "NotFoundError",
    "PersistenceError",
    "RequestNotFoundError",
]
