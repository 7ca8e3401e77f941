"""Append-only JSONL log of chain and request transitions.

Every mutation the engine performs is written as one JSON line carrying a
UTC timestamp, the engine session id, the event name and the ids, levels
and statuses involved.  The log is independent of the persistence adapter:
persistence stores the current state, the transition log records how it
got there.

Example
-------
>>> from pathlib import Path
>>> log = TransitionLog(Path("/tmp/approval_audit.jsonl"))
>>> log.record("request_created", request_id="r-1", chain_id="prd-approval", level=1)
>>> log.query({"event": "request_created"})[0]["request_id"]
'r-1'
"""
from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

TRANSITION_EVENTS: frozenset[str] = frozenset(
    {
        "chain_created",
        "chain_updated",
        "chain_deleted",
        "request_created",
        "approval_recorded",
        "request_approved",
        "request_advanced",
        "request_rejected",
        "request_escalated",
        "request_cancelled",
    }
)


class TransitionLog:
    """Thread-safe JSONL transition log.

    Parameters
    ----------
    log_path:
        Path to the ``.jsonl`` file.  Parent directories are created on
        first write.
    session_id:
        Identifier stamped on every record.  A random UUID by default.
    """

    def __init__(self, log_path: Path, session_id: str | None = None) -> None:
        self._log_path = Path(log_path)
        self._session_id: str = session_id or str(uuid.uuid4())
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def record(self, event: str, **fields: object) -> None:
        """Append one transition record.

        Raises
        ------
        ValueError
            When ``event`` is not one of :data:`TRANSITION_EVENTS`.
        """
        if event not in TRANSITION_EVENTS:
            raise ValueError(f"Unknown transition event {event!r}.")
        entry: dict[str, object] = {
            **fields,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "session_id": self._session_id,
            "event": event,
        }
        line = json.dumps(entry, default=str) + "\n"
        with self._lock:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def read_all(self) -> list[dict[str, object]]:
        """Return every record, oldest first.  Empty when the file is absent."""
        return list(self._iter_records())

    def query(self, filters: dict[str, object]) -> list[dict[str, object]]:
        """Return records whose top-level fields equal every filter value."""
        return [
            record
            for record in self._iter_records()
            if all(record.get(key) == value for key, value in filters.items())
        ]

    def history(self, request_id: str) -> list[dict[str, object]]:
        """Return the transitions of one request, oldest first."""
        return self.query({"request_id": request_id})

    def count(self) -> int:
        return sum(1 for _ in self._iter_records())

    def last_n(self, n: int) -> list[dict[str, object]]:
        records = self.read_all()
        return records[-n:] if n < len(records) else records

    @property
    def log_path(self) -> Path:
        return self._log_path

    @property
    def session_id(self) -> str:
        return self._session_id

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _iter_records(self) -> Iterator[dict[str, object]]:
        if not self._log_path.exists():
            return
        with self._lock:
            with self._log_path.open("r", encoding="utf-8") as fh:
                lines = fh.readlines()
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                continue  # torn trailing line from an interrupted write
