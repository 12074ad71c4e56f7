"""
Backend module - Remote collaborators: sessions, entities, analytics.
"""

from medportal.backend.base import (
    SessionBackend,
    EntityBackend,
    AnalyticsBackend,
    CompletionBackend
)
from medportal.backend.client import ApiClient, ApiResponse
from medportal.backend.sessions import HttpSessionBackend
from medportal.backend.entities import HttpEntityBackend
from medportal.backend.analytics import HttpAnalyticsBackend
from medportal.backend.memory import InMemorySessionBackend

__all__ = [
    "SessionBackend",
    "EntityBackend",
    "AnalyticsBackend",
    "CompletionBackend",
    "ApiClient",
    "ApiResponse",
    "HttpSessionBackend",
    "HttpEntityBackend",
    "HttpAnalyticsBackend",
    "InMemorySessionBackend"
]
