"""Approval chain engine: chain registry, request lifecycle and queries.

ApprovalChainEngine gates state-changing actions behind multi-level
sign-off.  Callers register chains, open a request against a chain, and
approvers vote until the request is approved, rejected, escalated or
cancelled.  A background :class:`TimeoutScheduler` escalates requests whose
level deadline has passed.

Concurrency: every mutation of a request runs while holding that
request's own lock (see :class:`RequestStore`), so concurrent votes on one
request are serialised and never double-count a quorum, and a timeout scan
re-checks each request under its lock before escalating it.  Chain edits,
request creation and level changes also hold a per-chain lock (taken
before the request lock), so a request's current level is always a level
of its chain.

Authorisation is not enforced by :meth:`ApprovalChainEngine.approve` or
:meth:`ApprovalChainEngine.reject`.  Callers check
:meth:`ApprovalChainEngine.can_user_approve` first.

Example
-------
>>> engine = ApprovalChainEngine()
>>> req = engine.create_request("prd-approval", "prd", "prd-42", requested_by="alice")
>>> req.status, req.current_level
(<RequestStatus.PENDING: 'pending'>, 1)
>>> engine.can_user_approve(req.id, "bob", "editor")
True
>>> req = engine.approve(req.id, "bob", comment="LGTM")
>>> req.current_level
2
>>> engine.get_approval_progress(req.id).percent_complete
50
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator

from pydantic import ValidationError

from aumos_approval_chains.audit import TransitionLog
from aumos_approval_chains.chains.registry import ChainRegistry
from aumos_approval_chains.chains.schema import (
    ApprovalChain,
    ApprovalLevel,
    ChainSpec,
    ChainUpdate,
    NextLevel,
    NoEscalation,
    NotifyRole,
    NotifyUser,
)
from aumos_approval_chains.config import EngineConfig
from aumos_approval_chains.errors import (
    ChainInUseError,
    ChainValidationError,
    DuplicateVoteError,
    InvalidStateError,
    LevelNotFoundError,
    PersistenceError,
)
from aumos_approval_chains.persistence import (
    InMemoryPersistence,
    JsonFilePersistence,
    PersistedState,
    PersistenceAdapter,
    PersistenceMode,
    PersistenceWriter,
)
from aumos_approval_chains.progress import (
    ApprovalProgress,
    compute_progress,
    deadline_sort_key,
    is_overdue,
    user_can_act,
)
from aumos_approval_chains.requests.models import (
    ApprovalEntry,
    ApprovalRequest,
    Decision,
    EscalationRecord,
    RequestStatus,
    ResourceType,
)
from aumos_approval_chains.requests.store import RequestStore
from aumos_approval_chains.scheduler import DEFAULT_INTERVAL_SECONDS, TimeoutScheduler

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "Timeout exceeded"


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _deadline(level: ApprovalLevel, start: datetime) -> datetime | None:
    timeout = level.timeout
    return start + timeout if timeout is not None else None


def _config_chain_id(name: str) -> str:
    # Stable across restarts so a persisted copy is replaced, not duplicated.
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"approval-chain:{name}"))


def _resource_type_value(resource_type: ResourceType | str) -> str:
    if isinstance(resource_type, ResourceType):
        return resource_type.value
    return str(resource_type)


def _validation_messages(exc: ValidationError) -> list[str]:
    messages: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location}: {error['msg']}" if location else str(error["msg"]))
    return messages


class ApprovalChainEngine:
    """Multi-level approval workflow engine.

    Construct one engine at process start and pass it to every call site.

    Parameters
    ----------
    persistence:
        Storage backend, or a pre-built :class:`PersistenceWriter`.
        Defaults to :class:`InMemoryPersistence`.
    persistence_mode:
        ``"async"`` (default) or ``"sync"``; ignored when ``persistence``
        is already a :class:`PersistenceWriter`.
    audit:
        Optional :class:`TransitionLog` receiving one record per mutation.
    install_default_chains:
        Register the built-in ticket, PRD and release chains.
    timeout_check_interval:
        Default seconds between timeout scans.
    clock:
        Returns the current UTC time.  Override in tests.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter | PersistenceWriter | None = None,
        persistence_mode: PersistenceMode = "async",
        audit: TransitionLog | None = None,
        install_default_chains: bool = True,
        timeout_check_interval: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if isinstance(persistence, PersistenceWriter):
            self._writer = persistence
        else:
            self._writer = PersistenceWriter(persistence or InMemoryPersistence(), mode=persistence_mode)
        self._audit = audit
        self._clock = clock or _utc_now
        self._chains = ChainRegistry(install_defaults=False)
        if install_default_chains:
            self._chains.install_defaults(self._clock())
        self._requests = RequestStore()
        self._scheduler = TimeoutScheduler(self, interval_seconds=timeout_check_interval)

    @classmethod
    def from_config(cls, config: EngineConfig, load: bool = True) -> "ApprovalChainEngine":
        """Build an engine from an :class:`EngineConfig`.

        Persisted state is loaded (when ``load`` is true), chains declared in
        the config are registered on top of it, and the timeout scheduler is
        started if the config enables it.
        """
        adapter: PersistenceAdapter
        if config.persistence.backend == "json":
            adapter = JsonFilePersistence(config.persistence.path)
        else:
            adapter = InMemoryPersistence()
        audit = TransitionLog(config.audit.log_path) if config.audit.enabled else None
        engine = cls(
            persistence=adapter,
            persistence_mode=config.persistence.mode,
            audit=audit,
            install_default_chains=config.install_default_chains,
            timeout_check_interval=config.scheduler.interval_seconds,
        )
        if load:
            engine.load(strict=True)
        now = engine._clock()
        for configured in config.chains:
            chain_id = configured.id or _config_chain_id(configured.name)
            existing = engine._chains.get(chain_id)
            spec = ChainSpec.model_validate(configured.model_dump(exclude={"id"}))
            engine._chains.add(
                ApprovalChain(
                    **spec.model_dump(),
                    id=chain_id,
                    created_at=existing.created_at if existing else now,
                    updated_at=now,
                )
            )
        if config.scheduler.enabled:
            engine.start_timeout_checker()
        return engine

    # ------------------------------------------------------------------
    # Lifecycle of the engine itself
    # ------------------------------------------------------------------

    def load(self, strict: bool = False) -> None:
        """Hydrate chains and requests from the persistence adapter.

        Persisted chains are added on top of the built-in ones (a persisted
        chain with a built-in id replaces it).  Failures are logged and leave
        the engine empty-but-usable, unless ``strict`` is true, in which
        case :class:`PersistenceError` propagates.
        """
        try:
            state = self._writer.load()
            chains = [ApprovalChain.from_dict(data) for data in state.chains]
            requests = [ApprovalRequest.from_dict(data) for data in state.requests]
        except (PersistenceError, ValidationError, KeyError, ValueError, TypeError) as exc:
            if strict:
                if isinstance(exc, PersistenceError):
                    raise
                raise PersistenceError(f"Persisted approval state is malformed: {exc}") from exc
            logger.exception("Failed to load approval chains from storage.")
            return

        self._chains.load(chains)
        self._requests.load(requests)
        for request in requests:
            chain = self._chains.get(request.chain_id)
            if chain is None or chain.level(request.current_level) is None:
                logger.warning(
                    "Loaded approval request %s references missing chain/level %s/%d.",
                    request.id,
                    request.chain_id,
                    request.current_level,
                )
        logger.info(
            "Loaded approval chains from storage: chains=%d requests=%d",
            len(self._chains),
            len(self._requests),
        )

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until queued persistence writes have finished."""
        return self._writer.flush(timeout)

    def close(self) -> None:
        """Stop the timeout checker and drain pending persistence writes."""
        self.stop_timeout_checker()
        self._writer.close()

    def __enter__(self) -> "ApprovalChainEngine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def get_chain(self, chain_id: str) -> ApprovalChain | None:
        return self._chains.get(chain_id)

    def get_all_chains(self) -> list[ApprovalChain]:
        return self._chains.all()

    def create_chain(
        self,
        spec: ChainSpec | Mapping[str, object],
        chain_id: str | None = None,
    ) -> ApprovalChain:
        """Validate and register a new chain.

        Parameters
        ----------
        spec:
            A :class:`ChainSpec` or an equivalent mapping.
        chain_id:
            Fixed id for the chain.  A UUID is generated when omitted.

        Raises
        ------
        ChainValidationError
            When levels are empty, duplicated or not numbered ``1..N``, a
            quorum is not positive, or ``chain_id`` is already taken.
        """
        validated = self._validate_spec(spec)
        if chain_id is not None and chain_id in self._chains:
            raise ChainValidationError([f"chain id {chain_id!r} already exists"])
        now = self._clock()
        chain = ApprovalChain(
            **validated.model_dump(),
            id=chain_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
        )
        self._chains.add(chain)
        logger.info("Created approval chain: id=%s name=%r levels=%d", chain.id, chain.name, chain.total_levels)
        self._record("chain_created", chain_id=chain.id, name=chain.name)
        self._persist()
        return chain

    def update_chain(
        self,
        chain_id: str,
        update: ChainUpdate | Mapping[str, object],
    ) -> ApprovalChain | None:
        """Apply an administrative edit to a chain.

        Returns ``None`` when the chain does not exist.

        Raises
        ------
        ChainValidationError
            When the update or the merged chain is invalid.
        ChainInUseError
            When new ``levels`` would strand an open request on a level
            that no longer exists.
        """
        if not isinstance(update, ChainUpdate):
            try:
                update = ChainUpdate.model_validate(dict(update))
            except ValidationError as exc:
                raise ChainValidationError(_validation_messages(exc)) from exc
        changes = update.changes()

        with self._chains.guarded(chain_id):
            chain = self._chains.get(chain_id)
            if chain is None:
                return None
            merged: dict[str, object] = {
                **chain.model_dump(),
                **changes,
                "id": chain.id,
                "created_at": chain.created_at,
                "updated_at": self._clock(),
            }
            try:
                updated = ApprovalChain.model_validate(merged)
            except ValidationError as exc:
                raise ChainValidationError(_validation_messages(exc)) from exc

            if "levels" in changes:
                stranded = [
                    request.id
                    for request in self._open_requests_for_chain(chain_id)
                    if updated.level(request.current_level) is None
                ]
                if stranded:
                    raise ChainInUseError(chain_id, stranded, action="re-level")

            self._chains.replace(updated)

        logger.info("Updated approval chain: id=%s fields=%s", chain_id, sorted(changes))
        self._record("chain_updated", chain_id=chain_id, fields=sorted(changes))
        self._persist()
        return updated

    def delete_chain(self, chain_id: str) -> bool:
        """Remove a chain.  Returns ``False`` when it does not exist.

        Raises
        ------
        ChainInUseError
            When pending or escalated requests still reference the chain.
        """
        with self._chains.guarded(chain_id):
            if chain_id not in self._chains:
                return False
            open_ids = [request.id for request in self._open_requests_for_chain(chain_id)]
            if open_ids:
                raise ChainInUseError(chain_id, open_ids)
            deleted = self._chains.remove(chain_id)
        if deleted:
            logger.info("Deleted approval chain: id=%s", chain_id)
            self._record("chain_deleted", chain_id=chain_id)
            self._persist()
        return deleted

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------

    def create_request(
        self,
        chain_id: str,
        resource_type: ResourceType | str,
        resource_id: str,
        requested_by: str,
        *,
        resource_name: str | None = None,
        requested_by_email: str | None = None,
    ) -> ApprovalRequest:
        """Open a new request at the first level of ``chain_id``.

        Raises
        ------
        ChainNotFoundError
            When the chain does not exist.
        """
        with self._chains.guarded(chain_id):
            chain = self._chains.require(chain_id)
            now = self._clock()
            first = chain.first_level
            request = ApprovalRequest(
                id=str(uuid.uuid4()),
                chain_id=chain_id,
                resource_type=_resource_type_value(resource_type),
                resource_id=resource_id,
                requested_by=requested_by,
                created_at=now,
                current_level=first.order,
                status=RequestStatus.PENDING,
                resource_name=resource_name,
                requested_by_email=requested_by_email,
                deadline=_deadline(first, now),
            )
            result = request.snapshot()
            self._requests.add(request)
        logger.info(
            "Created approval request: id=%s chain=%s resource=%s/%s deadline=%s",
            result.id,
            chain_id,
            result.resource_type,
            resource_id,
            result.deadline,
        )
        self._record_request("request_created", result, actor=requested_by)
        self._persist()
        return result

    def approve(
        self,
        request_id: str,
        user_id: str,
        comment: str | None = None,
        user_email: str | None = None,
    ) -> ApprovalRequest:
        """Record an approving vote at the request's current level.

        When the level's quorum is reached the request moves to the next
        level (status back to ``pending``, deadline recomputed) or, at the
        last level, becomes ``approved``.

        Raises
        ------
        RequestNotFoundError
            When the request does not exist.
        InvalidStateError
            When the request is not pending or escalated.
        DuplicateVoteError
            When ``user_id`` already voted at the current level.
        """
        with self._locked_on_chain(request_id) as request:
            self._assert_open(request, "approve")
            chain = self._chains.require(request.chain_id)
            level = self._require_level(chain, request)
            if request.has_acted(user_id):
                raise DuplicateVoteError(request.id, user_id, request.current_level)

            now = self._clock()
            request.approvals.append(
                ApprovalEntry(
                    user_id=user_id,
                    decision=Decision.APPROVED,
                    level_order=level.order,
                    timestamp=now,
                    user_email=user_email,
                    comment=comment,
                )
            )
            event = "approval_recorded"
            if len(request.approvals_at(level.order)) >= level.required_approvals:
                next_level = chain.next_level(level.order)
                if next_level is not None:
                    request.current_level = next_level.order
                    request.deadline = _deadline(next_level, now)
                    request.status = RequestStatus.PENDING
                    event = "request_advanced"
                    logger.info(
                        "Approval request advanced to next level: id=%s level=%d (%s)",
                        request.id,
                        next_level.order,
                        next_level.name,
                    )
                else:
                    request.status = RequestStatus.APPROVED
                    request.completed_at = now
                    event = "request_approved"
                    logger.info("Approval request fully approved: id=%s", request.id)
            request.version += 1
            result = request.snapshot()

        self._record_request(event, result, actor=user_id, level_voted=level.order)
        self._persist()
        return result

    def reject(
        self,
        request_id: str,
        user_id: str,
        comment: str | None = None,
        user_email: str | None = None,
    ) -> ApprovalRequest:
        """Veto the request.  One rejection at any level rejects it outright.

        Raises
        ------
        RequestNotFoundError
            When the request does not exist.
        InvalidStateError
            When the request is not pending or escalated.
        """
        with self._requests.locked(request_id) as request:
            self._assert_open(request, "reject")
            now = self._clock()
            request.approvals.append(
                ApprovalEntry(
                    user_id=user_id,
                    decision=Decision.REJECTED,
                    level_order=request.current_level,
                    timestamp=now,
                    user_email=user_email,
                    comment=comment,
                )
            )
            request.status = RequestStatus.REJECTED
            request.completed_at = now
            request.version += 1
            result = request.snapshot()

        logger.info("Approval request rejected: id=%s user=%s", request_id, user_id)
        self._record_request("request_rejected", result, actor=user_id)
        self._persist()
        return result

    def escalate(self, request_id: str, reason: str) -> ApprovalRequest:
        """Escalate a pending request according to its level's policy.

        A :class:`NextLevel` policy moves the request to the following level
        when there is one.  Role and user targets are recorded in the
        escalation history without moving the request; routing them is up
        to the notification layer.

        Raises
        ------
        RequestNotFoundError
            When the request does not exist.
        InvalidStateError
            When the request is not ``pending`` (escalated and finished
            requests cannot be escalated).
        """
        with self._locked_on_chain(request_id) as request:
            if request.status != RequestStatus.PENDING:
                raise InvalidStateError(
                    f"Cannot escalate approval request {request.id!r} in status {request.status.value!r}.",
                    request_id=request.id,
                    status=request.status.value,
                )
            record = self._escalate_locked(request, reason, self._clock())
            result = request.snapshot()

        self._after_escalation(result, record)
        return result

    def cancel(self, request_id: str) -> ApprovalRequest:
        """Withdraw an open request.

        Raises
        ------
        RequestNotFoundError
            When the request does not exist.
        InvalidStateError
            When the request is already approved, rejected or cancelled.
        """
        with self._requests.locked(request_id) as request:
            if request.status in (RequestStatus.APPROVED, RequestStatus.REJECTED):
                raise InvalidStateError(
                    f"Cannot cancel completed approval request {request.id!r} "
                    f"(status {request.status.value!r}).",
                    request_id=request.id,
                    status=request.status.value,
                )
            if request.status == RequestStatus.CANCELLED:
                raise InvalidStateError(
                    f"Approval request {request.id!r} is already cancelled.",
                    request_id=request.id,
                    status=request.status.value,
                )
            request.status = RequestStatus.CANCELLED
            request.completed_at = self._clock()
            request.version += 1
            result = request.snapshot()

        logger.info("Approval request cancelled: id=%s", request_id)
        self._record_request("request_cancelled", result)
        self._persist()
        return result

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    def check_timeouts(self, now: datetime | None = None) -> list[ApprovalRequest]:
        """Escalate every pending request whose deadline has passed.

        Each request is visited at most once per call and re-checked under
        its own lock, so a request that was approved or escalated since the
        candidate list was built is skipped.  A failure on one request is
        logged and the scan continues.

        Parameters
        ----------
        now:
            Override the current UTC time (for testing).

        Returns
        -------
        list[ApprovalRequest]
            The requests escalated by this scan.
        """
        effective_now = now or self._clock()
        escalated: list[ApprovalRequest] = []

        for candidate in self._requests.all():
            try:
                if not is_overdue(candidate, effective_now):
                    continue
                result = self._escalate_if_overdue(candidate.id, effective_now)
            except Exception:
                logger.exception("Failed to escalate timed-out approval request %s.", candidate.id)
                continue
            if result is not None:
                escalated.append(result)

        if escalated:
            logger.info("Escalated timed-out approval requests: count=%d", len(escalated))
        return escalated

    def start_timeout_checker(self, interval_seconds: float | None = None) -> None:
        """Start (or restart) periodic timeout scans on a background thread."""
        self._scheduler.start(interval_seconds)

    def stop_timeout_checker(self) -> None:
        """Stop periodic timeout scans.  A no-op when not running."""
        self._scheduler.stop()

    @property
    def timeout_checker_running(self) -> bool:
        return self._scheduler.is_running

    @property
    def scheduler(self) -> TimeoutScheduler:
        return self._scheduler

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: str) -> ApprovalRequest | None:
        return self._requests.get(request_id)

    def get_all_requests(self) -> list[ApprovalRequest]:
        return self._requests.all()

    def get_requests_by_resource(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
    ) -> list[ApprovalRequest]:
        """Return every request (any status) for one resource."""
        type_value = _resource_type_value(resource_type)
        return self._requests.filter(
            lambda r: r.resource_type == type_value and r.resource_id == resource_id
        )

    def find_open_request(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
    ) -> ApprovalRequest | None:
        """Return the pending or escalated request for a resource, if any.

        Callers use this to refuse a second open request for the same
        resource.
        """
        for request in self.get_requests_by_resource(resource_type, resource_id):
            if request.is_open:
                return request
        return None

    def get_pending_approvals(self, user_id: str, user_role: str | None = None) -> list[ApprovalRequest]:
        """Return open requests ``user_id`` may vote on right now.

        Ordered by deadline (soonest first); requests without a deadline
        come last, newest first.
        """
        pending: list[ApprovalRequest] = []
        for request in self._requests.all():
            chain = self._chains.get(request.chain_id)
            if chain is not None and user_can_act(request, chain, user_id, user_role):
                pending.append(request)
        return sorted(pending, key=deadline_sort_key)

    def can_user_approve(self, request_id: str, user_id: str, user_role: str | None = None) -> bool:
        """Return ``True`` when ``user_id`` may approve or reject the request now."""
        request = self._requests.get(request_id)
        if request is None:
            return False
        chain = self._chains.get(request.chain_id)
        if chain is None:
            return False
        return user_can_act(request, chain, user_id, user_role)

    def get_approval_progress(self, request_id: str) -> ApprovalProgress | None:
        """Return progress for a request, or ``None`` if it (or its chain) is unknown."""
        request = self._requests.get(request_id)
        if request is None:
            return None
        chain = self._chains.get(request.chain_id)
        if chain is None:
            return None
        return compute_progress(request, chain)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _locked_on_chain(self, request_id: str) -> Iterator[ApprovalRequest]:
        """Hold the request's chain lock, then its record lock.

        Used by every operation that can move a request to another level,
        so chain edits never interleave with a level change.
        """
        chain_id = self._requests.chain_of(request_id)
        with self._chains.guarded(chain_id):
            with self._requests.locked(request_id) as request:
                yield request

    def _escalate_if_overdue(self, request_id: str, now: datetime) -> ApprovalRequest | None:
        with self._locked_on_chain(request_id) as request:
            if not is_overdue(request, now):
                return None
            record = self._escalate_locked(request, TIMEOUT_REASON, now)
            result = request.snapshot()
        logger.warning(
            "Approval request %s timed out at level %d; escalated to %s.",
            request_id,
            record.from_level,
            record.target,
        )
        self._after_escalation(result, record)
        return result

    def _escalate_locked(self, request: ApprovalRequest, reason: str, now: datetime) -> EscalationRecord:
        """Apply an escalation to a record whose lock the caller holds."""
        chain = self._chains.require(request.chain_id)
        level = self._require_level(chain, request)
        from_level = request.current_level
        to_level = from_level

        match level.escalate_to:
            case NextLevel():
                next_level = chain.next_level(from_level)
                if next_level is not None:
                    request.current_level = next_level.order
                    request.deadline = _deadline(next_level, now)
                    to_level = next_level.order
            case NotifyRole() | NotifyUser() | NoEscalation():
                pass

        record = EscalationRecord(
            from_level=from_level,
            to_level=to_level,
            reason=reason,
            timestamp=now,
            target=level.escalate_to.describe(),
        )
        request.escalation_history.append(record)
        request.status = RequestStatus.ESCALATED
        request.version += 1
        return record

    def _after_escalation(self, result: ApprovalRequest, record: EscalationRecord) -> None:
        logger.info(
            "Approval request escalated: id=%s from=%d to=%d target=%s reason=%r",
            result.id,
            record.from_level,
            record.to_level,
            record.target,
            record.reason,
        )
        self._record_request(
            "request_escalated",
            result,
            from_level=record.from_level,
            to_level=record.to_level,
            target=record.target,
            reason=record.reason,
        )
        self._persist()

    def _validate_spec(self, spec: ChainSpec | Mapping[str, object]) -> ChainSpec:
        data = spec.model_dump() if isinstance(spec, ChainSpec) else dict(spec)
        try:
            return ChainSpec.model_validate(data)
        except ValidationError as exc:
            raise ChainValidationError(_validation_messages(exc)) from exc

    def _open_requests_for_chain(self, chain_id: str) -> list[ApprovalRequest]:
        return self._requests.filter(lambda r: r.chain_id == chain_id and r.is_open)

    @staticmethod
    def _assert_open(request: ApprovalRequest, action: str) -> None:
        if not request.is_open:
            raise InvalidStateError(
                f"Cannot {action} approval request {request.id!r} in status {request.status.value!r}.",
                request_id=request.id,
                status=request.status.value,
            )

    @staticmethod
    def _require_level(chain: ApprovalChain, request: ApprovalRequest) -> ApprovalLevel:
        level = chain.level(request.current_level)
        if level is None:
            raise LevelNotFoundError(chain.id, request.current_level)
        return level

    def _snapshot_state(self) -> PersistedState:
        return PersistedState(
            chains=[chain.to_dict() for chain in self._chains.all()],
            requests=[request.to_dict() for request in self._requests.all()],
        )

    def _persist(self) -> None:
        self._writer.submit(self._snapshot_state)

    def _record_request(self, event: str, request: ApprovalRequest, **fields: object) -> None:
        self._record(
            event,
            request_id=request.id,
            chain_id=request.chain_id,
            status=request.status.value,
            level=request.current_level,
            **fields,
        )

    def _record(self, event: str, **fields: object) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record(event, **fields)
        except OSError:
            logger.exception("Failed to write approval transition %s to the audit log.", event)
