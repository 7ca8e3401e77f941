"""Thread-safe in-memory registry of approval chains."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from aumos_approval_chains.chains.defaults import build_default_chains
from aumos_approval_chains.chains.schema import ApprovalChain
from aumos_approval_chains.errors import ChainNotFoundError

logger = logging.getLogger(__name__)


class ChainRegistry:
    """Stores :class:`ApprovalChain` definitions keyed by id.

    Chains are pydantic models and are replaced wholesale on update, so a
    chain returned to a caller is never mutated behind its back.

    Parameters
    ----------
    install_defaults:
        Register the built-in ticket, PRD and release chains on creation.
    """

    def __init__(self, install_defaults: bool = True) -> None:
        self._chains: dict[str, ApprovalChain] = {}
        self._guards: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        if install_defaults:
            self.install_defaults()

    @contextmanager
    def guarded(self, chain_id: str) -> Iterator[None]:
        """Hold the per-chain lock for ``chain_id``.

        Edits to a chain and any change that places a request on one of
        its levels run under this lock, so a request never lands on a
        level the chain no longer has.  Acquire it before a request lock.
        """
        with self._lock:
            guard = self._guards.setdefault(chain_id, threading.Lock())
        with guard:
            yield

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def install_defaults(self, now: datetime | None = None) -> None:
        """Register (or reset) the built-in chains."""
        effective_now = now or datetime.now(tz=timezone.utc)
        with self._lock:
            for chain in build_default_chains(effective_now):
                self._chains[chain.id] = chain
        logger.debug("Installed %d built-in approval chains.", len(self._chains))

    def add(self, chain: ApprovalChain) -> None:
        """Register ``chain``, replacing any chain with the same id."""
        with self._lock:
            self._chains[chain.id] = chain

    def replace(self, chain: ApprovalChain) -> None:
        """Swap in a new version of an existing chain.

        Raises
        ------
        ChainNotFoundError
            When no chain with ``chain.id`` is registered.
        """
        with self._lock:
            if chain.id not in self._chains:
                raise ChainNotFoundError(chain.id)
            self._chains[chain.id] = chain

    def remove(self, chain_id: str) -> bool:
        """Remove a chain.  Returns ``False`` when it was not registered."""
        with self._lock:
            return self._chains.pop(chain_id, None) is not None

    def load(self, chains: list[ApprovalChain]) -> None:
        """Add persisted chains on top of whatever is registered."""
        with self._lock:
            for chain in chains:
                self._chains[chain.id] = chain

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def get(self, chain_id: str) -> ApprovalChain | None:
        with self._lock:
            return self._chains.get(chain_id)

    def require(self, chain_id: str) -> ApprovalChain:
        """Return the chain or raise :class:`ChainNotFoundError`."""
        chain = self.get(chain_id)
        if chain is None:
            raise ChainNotFoundError(chain_id)
        return chain

    def all(self) -> list[ApprovalChain]:
        """Return every chain in registration order."""
        with self._lock:
            return list(self._chains.values())

    def __contains__(self, chain_id: object) -> bool:
        with self._lock:
            return chain_id in self._chains

    def __len__(self) -> int:
        with self._lock:
            return len(self._chains)
