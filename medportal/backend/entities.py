"""
HTTP Entity Backend - User updates, record creation and completion over REST.
"""

from typing import Dict, Any, Optional

from medportal.backend.base import EntityBackend, CompletionBackend
from medportal.backend.client import ApiClient
from medportal.config.constants import API_ROUTES
from medportal.infra.exceptions import BackendError
from medportal.infra.logger import get_logger


logger = get_logger(__name__)

USER_FIELD_NAMES = {
    "role": "role",
    "school_id": "schoolId",
    "program_id": "programId",
}


def _created(body: Dict[str, Any], key: str, operation: str) -> Dict[str, Any]:
    """
    Pull the created record out of a response body.

    The API answers with the record itself, or wraps it under "data" or
    under the entity name.
    """
    for candidate in (body.get("data"), body.get(key), body):
        if isinstance(candidate, dict) and candidate.get("id"):
            return candidate
    raise BackendError(f"{operation} response has no id", operation=operation)


class HttpEntityBackend(EntityBackend, CompletionBackend):
    """
    Creates schools, programs and clinical sites, updates the user and
    marks onboarding complete.
    """

    def __init__(self, client: ApiClient):
        self.client = client

    async def update_user(self, **fields: Any) -> Dict[str, Any]:
        unknown = set(fields) - set(USER_FIELD_NAMES)
        if unknown:
            raise ValueError(f"Cannot update user field(s): {sorted(unknown)}")

        payload = {USER_FIELD_NAMES[name]: value for name, value in fields.items()}
        response = await self.client.request(
            "POST",
            API_ROUTES["user_update"],
            json=payload,
            operation="update_user"
        )
        logger.info(f"Updated user: {sorted(payload)}")
        return response.body

    async def create_school(self, name: str, address: Optional[str] = None) -> Dict[str, Any]:
        response = await self.client.request(
            "POST",
            API_ROUTES["schools_create"],
            json={"name": name, "address": address or ""},
            operation="create_school"
        )
        school = _created(response.body, "school", "create_school")
        logger.info(f"Created school {school['id']}")
        return school

    async def create_program(
        self,
        school_id: str,
        name: str,
        program_type: str,
        duration: int,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {
            "schoolId": school_id,
            "name": name,
            "type": program_type,
            "duration": duration,
        }
        if description:
            payload["description"] = description

        response = await self.client.request(
            "POST",
            API_ROUTES["programs"],
            json=payload,
            operation="create_program"
        )
        program = _created(response.body, "program", "create_program")
        logger.info(f"Created program {program['id']} for school {school_id}")
        return program

    async def create_clinical_site(
        self,
        name: str,
        address: str,
        site_type: str,
        capacity: int,
        email: Optional[str] = None,
        phone: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {
            "name": name,
            "address": address,
            "type": site_type,
            "capacity": capacity,
        }
        if email:
            payload["email"] = email
        if phone:
            payload["phone"] = phone

        response = await self.client.request(
            "POST",
            API_ROUTES["clinical_sites"],
            json=payload,
            operation="create_clinical_site"
        )
        site = _created(response.body, "site", "create_clinical_site")
        logger.info(f"Created clinical site {site['id']}")
        return site

    async def mark_complete(self) -> Dict[str, Any]:
        response = await self.client.request(
            "POST",
            API_ROUTES["onboarding_complete"],
            operation="mark_complete"
        )
        return response.body
