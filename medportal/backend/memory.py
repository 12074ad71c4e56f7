"""
In-Memory Session Backend - Process-local session storage for development and tests.
"""

from typing import Dict, List, Any, Optional, Callable
from datetime import datetime
import copy

from medportal.backend.base import SessionBackend
from medportal.infra.logger import get_logger
from medportal.infra.utils import utc_now, parse_datetime, to_iso, generate_id


logger = get_logger(__name__)


class InMemorySessionBackend(SessionBackend):
    """
    Keeps session records for a single identity in a dict.

    Every upsert is also appended to `writes` so callers can see how many
    durable writes actually happened.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._records: Dict[str, Dict[str, Any]] = {}
        self.writes: List[Dict[str, Any]] = []

    async def upsert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(record)
        if not stored.get("session_id"):
            stored["session_id"] = generate_id("onb")
        self._records[stored["session_id"]] = stored
        self.writes.append(copy.deepcopy(stored))
        logger.debug(f"Stored session {stored['session_id']} at step {stored.get('current_step')}")
        return copy.deepcopy(stored)

    async def fetch_latest(self) -> Optional[Dict[str, Any]]:
        if not self._records:
            return None

        latest = max(
            self._records.values(),
            key=lambda r: parse_datetime(r.get("updated_at") or r["expires_at"])
        )
        result = copy.deepcopy(latest)

        if parse_datetime(result["expires_at"]) <= self._clock():
            result["status"] = "expired"

        return result

    async def delete(self, session_id: str) -> bool:
        if session_id not in self._records:
            return False
        del self._records[session_id]
        logger.debug(f"Deleted session {session_id}")
        return True

    async def touch(self, session_id: str, expires_at: datetime) -> bool:
        record = self._records.get(session_id)
        if record is None:
            return False
        record["expires_at"] = to_iso(expires_at)
        return True

    async def revive(self, session_id: str, expires_at: datetime) -> Optional[Dict[str, Any]]:
        record = self._records.get(session_id)
        if record is None:
            return None
        record["expires_at"] = to_iso(expires_at)
        record["updated_at"] = to_iso(self._clock())
        record["status"] = "active"
        return copy.deepcopy(record)

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Stored record by id (a copy), or None."""
        record = self._records.get(session_id)
        return copy.deepcopy(record) if record else None

    def __len__(self) -> int:
        return len(self._records)
