"""
HTTP Analytics Backend - Posts onboarding events to the analytics route.
"""

from typing import Dict, Any

from medportal.backend.base import AnalyticsBackend
from medportal.backend.client import ApiClient
from medportal.config.constants import API_ROUTES


def event_to_wire(event: Dict[str, Any]) -> Dict[str, Any]:
    payload = {
        "eventType": event["type"],
        "step": event["step"],
        "timestamp": event["timestamp"],
    }
    if event.get("session_id"):
        payload["sessionId"] = event["session_id"]
    if event.get("metadata"):
        payload["metadata"] = event["metadata"]
    if event.get("duration_ms") is not None:
        payload["durationMs"] = event["duration_ms"]
    if event.get("error_message"):
        payload["errorMessage"] = event["error_message"]
    return payload


class HttpAnalyticsBackend(AnalyticsBackend):
    """Sends events to /api/onboarding/analytics."""

    def __init__(self, client: ApiClient):
        self.client = client

    async def track(self, event: Dict[str, Any]) -> None:
        await self.client.request(
            "POST",
            API_ROUTES["analytics"],
            json=event_to_wire(event),
            operation="track_event"
        )
