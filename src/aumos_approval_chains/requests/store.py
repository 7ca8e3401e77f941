"""In-memory request store with per-request locking.

Each request id owns its own ``threading.Lock``.  Lifecycle operations and
the timeout scan mutate a record only while holding that lock, so two
approvers racing on the same request (or an approver racing the
scheduler) are serialised, while operations on unrelated requests never
wait on each other.  A separate store lock guards the id -> record maps
and is held only for lookups and inserts.

Readers receive deep-copied snapshots; the live record is reachable only
through :meth:`RequestStore.locked`.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from aumos_approval_chains.errors import RequestNotFoundError
from aumos_approval_chains.requests.models import ApprovalRequest


class RequestStore:
    """Keyed collection of :class:`ApprovalRequest` records."""

    def __init__(self) -> None:
        self._requests: dict[str, ApprovalRequest] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def add(self, request: ApprovalRequest) -> None:
        """Insert a new record.

        Raises
        ------
        ValueError
            When a request with the same id already exists.
        """
        with self._lock:
            if request.id in self._requests:
                raise ValueError(f"Approval request {request.id!r} already exists.")
            self._requests[request.id] = request
            self._locks[request.id] = threading.Lock()

    def load(self, requests: list[ApprovalRequest]) -> None:
        """Replace the store contents with ``requests`` (startup hydration)."""
        with self._lock:
            self._requests = {r.id: r for r in requests}
            self._locks = {r.id: threading.Lock() for r in requests}

    @contextmanager
    def locked(self, request_id: str) -> Iterator[ApprovalRequest]:
        """Hold the per-request lock and yield the live record.

        Raises
        ------
        RequestNotFoundError
            When no request with ``request_id`` exists.
        """
        with self._lock:
            record_lock = self._locks.get(request_id)
        if record_lock is None:
            raise RequestNotFoundError(request_id)
        with record_lock:
            with self._lock:
                request = self._requests.get(request_id)
            if request is None:
                raise RequestNotFoundError(request_id)
            yield request

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> ApprovalRequest | None:
        """Return a snapshot of the request, or ``None``."""
        with self._lock:
            record_lock = self._locks.get(request_id)
        if record_lock is None:
            return None
        with record_lock:
            request = self._requests.get(request_id)
            return request.snapshot() if request is not None else None

    def require(self, request_id: str) -> ApprovalRequest:
        """Return a snapshot of the request or raise :class:`RequestNotFoundError`."""
        request = self.get(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def chain_of(self, request_id: str) -> str:
        """Return the chain id of a request.  It never changes after creation.

        Raises
        ------
        RequestNotFoundError
            When no request with ``request_id`` exists.
        """
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise RequestNotFoundError(request_id)
            return request.chain_id

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._requests)

    def all(self) -> list[ApprovalRequest]:
        """Return snapshots of every request in insertion order."""
        snapshots: list[ApprovalRequest] = []
        for request_id in self.ids():
            request = self.get(request_id)
            if request is not None:
                snapshots.append(request)
        return snapshots

    def filter(self, predicate: Callable[[ApprovalRequest], bool]) -> list[ApprovalRequest]:
        """Return snapshots of the requests for which ``predicate`` is true."""
        return [r for r in self.all() if predicate(r)]

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._requests

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)
