"""
Infra module - Infrastructure utilities and helpers.
"""

from medportal.infra.logger import setup_logger, get_logger
from medportal.infra.exceptions import (
    PortalError,
    ConfigurationError,
    StartupError,
    BackendError,
    PersistenceError,
    SessionClosedError,
    SideEffectError,
    UnknownFieldError
)
from medportal.infra.utils import (
    utc_now,
    parse_datetime,
    format_countdown,
    generate_id
)

__all__ = [
    "setup_logger",
    "get_logger",
    "PortalError",
    "ConfigurationError",
    "StartupError",
    "BackendError",
    "PersistenceError",
    "SessionClosedError",
    "SideEffectError",
    "UnknownFieldError",
    "utc_now",
    "parse_datetime",
    "format_countdown",
    "generate_id"
]
