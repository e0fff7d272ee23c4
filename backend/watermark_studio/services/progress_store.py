"""In-memory progress tracking for watermark-removal batches."""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional

from watermark_studio.core.errors import InputError
from watermark_studio.schemas.contracts import ProcessingResult, ProgressSnapshot

logger = logging.getLogger(__name__)


class ProgressStore:
    """Map session ids to progress snapshots.

    Snapshots are mutated from coroutines on a single event loop, so each
    read-modify-write below runs without interruption. Finished sessions are
    evicted once they outlive ``ttl_s`` or the store grows past
    ``max_entries``; sessions still processing are always kept.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_s: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: Dict[str, ProgressSnapshot] = {}
        self.max_entries = max_entries
        self.ttl_s = ttl_s
        self._clock = clock

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def create(self, session_id: str, total: int) -> ProgressSnapshot:
        existing = self._sessions.get(session_id)
        if existing is not None and not existing.is_terminal:
            raise InputError(f"Session {session_id} is already processing")
        self.evict()
        now = self._clock()
        snapshot = ProgressSnapshot(total=total, created_at=now, updated_at=now)
        if total == 0:
            snapshot.status = "completed"
        self._sessions[session_id] = snapshot
        return snapshot

    def get(self, session_id: str) -> Optional[ProgressSnapshot]:
        return self._sessions.get(session_id)

    def _require(self, session_id: str) -> ProgressSnapshot:
        snapshot = self._sessions.get(session_id)
        if snapshot is None:
            raise KeyError(f"Session {session_id} not found")
        return snapshot

    def mark_current(self, session_id: str, filename: str) -> None:
        snapshot = self._require(session_id)
        snapshot.current = filename
        snapshot.updated_at = self._clock()

    def record_result(self, session_id: str, result: ProcessingResult) -> ProgressSnapshot:
        snapshot = self._require(session_id)
        snapshot.results.append(result)
        snapshot.completed += 1
        if snapshot.completed >= snapshot.total:
            snapshot.status = "completed"
            snapshot.current = ""
        snapshot.updated_at = self._clock()
        return snapshot

    def mark_error(self, session_id: str) -> None:
        snapshot = self._require(session_id)
        snapshot.status = "error"
        snapshot.current = ""
        snapshot.updated_at = self._clock()

    def evict(self) -> int:
        now = self._clock()
        expired = [
            sid for sid, snap in self._sessions.items() if snap.is_terminal and now - snap.updated_at > self.ttl_s
        ]
        for sid in expired:
            del self._sessions[sid]

        overflow = len(self._sessions) - self.max_entries + 1
        if overflow > 0:
            finished = sorted(
                (snap.updated_at, sid) for sid, snap in self._sessions.items() if snap.is_terminal
            )
            for _, sid in finished[:overflow]:
                del self._sessions[sid]
                expired.append(sid)

        if expired:
            logger.info("Evicted %d finished sessions", len(expired))
        return len(expired)
