"""
HTTP Session Backend - Onboarding session storage over the portal REST API.

The API speaks camelCase and nests answers under "formData"; records handed
to the gateway use the snake_case Session.to_dict() layout.
"""

from typing import Dict, Any, Optional
from datetime import datetime

from medportal.backend.base import SessionBackend
from medportal.backend.client import ApiClient
from medportal.config.constants import API_ROUTES
from medportal.onboarding.states import ANSWER_FIELDS
from medportal.infra.logger import get_logger
from medportal.infra.utils import to_iso, utc_now


logger = get_logger(__name__)

# Record id used when the server reports an expired session without its body.
EXPIRED_PLACEHOLDER_ID = "expired"

ANSWER_ALIASES = {
    "role": "selectedRole",
    "school_id": "selectedSchool",
    "program_id": "selectedProgram",
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def answers_to_wire(answers: Dict[str, Any]) -> Dict[str, Any]:
    """Answer set -> API formData."""
    return {
        ANSWER_ALIASES.get(name, _camel(name)): value
        for name, value in answers.items()
    }


_WIRE_TO_ANSWER = {
    ANSWER_ALIASES.get(name, _camel(name)): name for name in ANSWER_FIELDS
}


def answers_from_wire(form_data: Dict[str, Any]) -> Dict[str, Any]:
    """API formData -> answer set. Unknown keys are dropped."""
    return {
        _WIRE_TO_ANSWER[key]: value
        for key, value in (form_data or {}).items()
        if key in _WIRE_TO_ANSWER and value is not None
    }


def record_to_wire(record: Dict[str, Any]) -> Dict[str, Any]:
    """Gateway record -> API body. A new session is sent without sessionId."""
    payload = {
        "currentStep": record.get("current_step"),
        "completedSteps": list(record.get("completed_steps") or []),
        "skippedSteps": list(record.get("skipped_steps") or []),
        "path": list(record.get("path") or []),
        "formData": answers_to_wire(record.get("answers") or {}),
        "status": record.get("status"),
        "createdAt": record.get("created_at"),
        "updatedAt": record.get("updated_at"),
        "expiresAt": record.get("expires_at")
    }
    if record.get("session_id"):
        payload["sessionId"] = record["session_id"]
    return payload


def record_from_wire(data: Dict[str, Any]) -> Dict[str, Any]:
    record = {
        "session_id": data.get("id") or data.get("sessionId"),
        "current_step": data.get("currentStep") or "welcome",
        "answers": answers_from_wire(data.get("formData") or {}),
        "completed_steps": list(data.get("completedSteps") or []),
        "skipped_steps": list(data.get("skippedSteps") or []),
        "status": data.get("status") or "active",
        "created_at": data.get("createdAt"),
        "updated_at": data.get("updatedAt"),
        "expires_at": data.get("expiresAt")
    }
    if data.get("path") is not None:
        record["path"] = list(data["path"])
    return record


class HttpSessionBackend(SessionBackend):
    """
    Session backend for /api/onboarding/session and friends.
    """

    def __init__(self, client: ApiClient):
        self.client = client

    async def upsert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.request(
            "POST",
            API_ROUTES["session"],
            json=record_to_wire(record),
            operation="save_session"
        )
        body = response.body
        data = body.get("data") if isinstance(body.get("data"), dict) else {}

        stored = dict(record)
        session_id = body.get("sessionId") or data.get("id")
        if session_id:
            stored["session_id"] = session_id
        expires_at = body.get("expiresAt") or data.get("expiresAt")
        if expires_at:
            stored["expires_at"] = expires_at
        return stored

    async def fetch_latest(self) -> Optional[Dict[str, Any]]:
        response = await self.client.request(
            "GET",
            API_ROUTES["session"],
            allow_status=(404, 410),
            operation="load_session"
        )

        if response.status == 404:
            return None

        data = response.body.get("data")

        if response.status == 410:
            logger.info("Server reports the onboarding session as expired")
            if isinstance(data, dict):
                record = record_from_wire(data)
            else:
                record = record_from_wire({"id": response.body.get("sessionId") or EXPIRED_PLACEHOLDER_ID})
            record["status"] = "expired"
            record["expires_at"] = record.get("expires_at") or to_iso(utc_now())
            return record

        if not isinstance(data, dict):
            return None
        return record_from_wire(data)

    async def delete(self, session_id: str) -> bool:
        response = await self.client.request(
            "DELETE",
            API_ROUTES["session"],
            params={"sessionId": session_id},
            allow_status=(404,),
            operation="abandon_session"
        )
        if response.status == 404:
            return False
        return bool(response.body.get("success", True))

    async def touch(self, session_id: str, expires_at: datetime) -> bool:
        response = await self.client.request(
            "POST",
            API_ROUTES["session_extend"],
            json={"sessionId": session_id, "expiresAt": to_iso(expires_at)},
            allow_status=(404,),
            operation="extend_session"
        )
        if response.status == 404:
            return False
        return bool(response.body.get("success"))

    async def revive(self, session_id: str, expires_at: datetime) -> Optional[Dict[str, Any]]:
        payload: Dict[str, Any] = {"expiresAt": to_iso(expires_at)}
        if session_id != EXPIRED_PLACEHOLDER_ID:
            payload["sessionId"] = session_id

        response = await self.client.request(
            "POST",
            API_ROUTES["session_recover"],
            json=payload,
            allow_status=(404,),
            operation="recover_session"
        )
        data = response.body.get("data")
        if response.status == 404 or not isinstance(data, dict):
            return None

        record = record_from_wire(data)
        record["status"] = "active"
        record["expires_at"] = record.get("expires_at") or to_iso(expires_at)
        return record
