"""
Backend Interfaces - Contracts for the remote collaborators the engine talks to.

Session records are plain dicts in the snake_case layout produced by
Session.to_dict(). Implementations raise BackendError for transport or
server failures and return None (or False) for "does not exist".
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
from datetime import datetime


class SessionBackend(ABC):
    """Stores one onboarding session per identity."""

    @abstractmethod
    async def upsert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create or replace the record keyed by record["session_id"].

        A record without a session_id is new; the backend assigns the id and
        returns it in the stored record.
        """

    @abstractmethod
    async def fetch_latest(self) -> Optional[Dict[str, Any]]:
        """
        Latest non-deleted record for the identity.

        An expired record is returned with status "expired"; a missing one
        is None.
        """

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""

    @abstractmethod
    async def touch(self, session_id: str, expires_at: datetime) -> bool:
        """Move expires_at without altering stored answers."""

    @abstractmethod
    async def revive(self, session_id: str, expires_at: datetime) -> Optional[Dict[str, Any]]:
        """Re-open an expired record with a new expiry and return it."""


class EntityBackend(ABC):
    """Creates domain records and updates the user."""

    @abstractmethod
    async def update_user(self, **fields: Any) -> Dict[str, Any]:
        """Persist role/school/program on the user record."""

    @abstractmethod
    async def create_school(self, name: str, address: Optional[str] = None) -> Dict[str, Any]:
        """Create a school; the result carries the generated "id"."""

    @abstractmethod
    async def create_program(
        self,
        school_id: str,
        name: str,
        program_type: str,
        duration: int,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a program under a school."""

    @abstractmethod
    async def create_clinical_site(
        self,
        name: str,
        address: str,
        site_type: str,
        capacity: int,
        email: Optional[str] = None,
        phone: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a clinical site."""


class AnalyticsBackend(ABC):
    """Receives onboarding analytics events."""

    @abstractmethod
    async def track(self, event: Dict[str, Any]) -> None:
        """Record one event. The result is never inspected."""


class CompletionBackend(ABC):
    """Marks onboarding as finished for the identity."""

    @abstractmethod
    async def mark_complete(self) -> Dict[str, Any]:
        """Idempotent: calling it twice has the same effect as once."""
