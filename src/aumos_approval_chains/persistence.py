"""Persistence adapters for chains and requests.

The engine keeps all state in memory and hands the persistence layer an
opaque snapshot of both collections after every mutation.  Adapters only
need ``load()`` and ``save()``.

Durability is an explicit choice made through :class:`PersistenceWriter`:

``async`` (default)
    The snapshot is taken synchronously and written by a single background
    worker, so the caller never waits on I/O.  A failed write is logged and
    the in-memory change is kept: availability wins over durability, and a
    crash between the mutation and the flush loses that transition.
``sync``
    The snapshot is written before the operation returns.  A failed write
    raises :class:`PersistenceError` to the caller; the in-memory change is
    still kept, but the caller knows it is not durable.

Example
-------
>>> from pathlib import Path
>>> adapter = JsonFilePersistence(Path("/tmp/approvals.json"))
>>> writer = PersistenceWriter(adapter, mode="sync")
>>> writer.submit(lambda: PersistedState(chains=[], requests=[]))
>>> adapter.load().requests
[]
"""
from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Literal

from aumos_approval_chains.errors import PersistenceError

logger = logging.getLogger(__name__)

PersistenceMode = Literal["async", "sync"]


@dataclass
class PersistedState:
    """JSON-compatible snapshot of both engine collections."""

    chains: list[dict[str, object]] = field(default_factory=list)
    requests: list[dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {"chains": self.chains, "requests": self.requests}

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> PersistedState:
        return cls(
            chains=list(data.get("chains") or []),  # type: ignore[call-overload]
            requests=list(data.get("requests") or []),  # type: ignore[call-overload]
        )


class PersistenceAdapter(ABC):
    """Storage backend contract: load and save the two collections."""

    @abstractmethod
    def load(self) -> PersistedState:
        """Return the last saved state (empty when nothing was saved)."""

    @abstractmethod
    def save(self, state: PersistedState) -> None:
        """Durably store ``state``.  Raise :class:`PersistenceError` on failure."""


class InMemoryPersistence(PersistenceAdapter):
    """Keeps the last saved state in memory.  Used by default and in tests."""

    def __init__(self, initial: PersistedState | None = None) -> None:
        self._state = copy.deepcopy(initial) if initial is not None else PersistedState()
        self._lock = threading.Lock()
        self.save_count = 0

    def load(self) -> PersistedState:
        with self._lock:
            return copy.deepcopy(self._state)

    def save(self, state: PersistedState) -> None:
        with self._lock:
            self._state = copy.deepcopy(state)
            self.save_count += 1


class JsonFilePersistence(PersistenceAdapter):
    """Stores both collections in one JSON document.

    Writes go to a temporary file in the same directory which then replaces
    the target, so readers never observe a half-written document.

    Parameters
    ----------
    path:
        Location of the JSON document.  Parent directories are created on
        first save.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> PersistedState:
        with self._lock:
            if not self._path.exists():
                return PersistedState()
            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    raw = json.load(fh)
            except (OSError, json.JSONDecodeError) as exc:
                raise PersistenceError(f"Cannot read approval state from {self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise PersistenceError(f"Approval state in {self._path} is not a JSON object.")
        return PersistedState.from_dict(raw)

    def save(self, state: PersistedState) -> None:
        payload = json.dumps(state.to_dict(), indent=2, default=str)
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(payload)
                    os.replace(tmp_name, self._path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                raise PersistenceError(f"Cannot write approval state to {self._path}: {exc}") from exc


class PersistenceWriter:
    """Applies the configured durability mode on top of an adapter.

    Parameters
    ----------
    adapter:
        The storage backend.
    mode:
        ``"async"`` or ``"sync"`` (see module docstring).
    """

    def __init__(self, adapter: PersistenceAdapter, mode: PersistenceMode = "async") -> None:
        if mode not in ("async", "sync"):
            raise ValueError(f"Unknown persistence mode {mode!r}; expected 'async' or 'sync'.")
        self._adapter = adapter
        self._mode: PersistenceMode = mode
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        # The worker is single-threaded, so the newest write finishes last.
        self._last_write: Future[None] | None = None
        self._failures = 0

    @property
    def adapter(self) -> PersistenceAdapter:
        return self._adapter

    @property
    def mode(self) -> PersistenceMode:
        return self._mode

    @property
    def failure_count(self) -> int:
        """Number of writes that failed since creation."""
        return self._failures

    def load(self) -> PersistedState:
        return self._adapter.load()

    def submit(self, snapshot: Callable[[], PersistedState]) -> None:
        """Persist the state produced by ``snapshot``.

        The snapshot is taken under the writer lock so that snapshots reach
        the single worker in the order the mutations happened.

        Raises
        ------
        PersistenceError
            In ``sync`` mode, when the adapter fails.
        """
        with self._lock:
            state = snapshot()
            if self._mode == "sync":
                self._write(state, raise_errors=True)
                return
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="approval-persist")
            self._last_write = self._executor.submit(self._write, state, False)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued asynchronous writes.  Returns ``False`` on timeout."""
        last_write = self._last_write
        if last_write is None:
            return True
        _, not_done = wait_futures([last_write], timeout=timeout)
        return not not_done

    def close(self) -> None:
        """Drain queued writes and stop the worker."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def _write(self, state: PersistedState, raise_errors: bool) -> None:
        try:
            self._adapter.save(state)
        except Exception as exc:
            self._failures += 1
            if raise_errors:
                if isinstance(exc, PersistenceError):
                    raise
                raise PersistenceError(f"Failed to save approval state: {exc}") from exc
            logger.exception(
                "Failed to save approval state; in-memory changes are kept but not durable."
            )
