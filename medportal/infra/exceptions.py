"""
Exceptions - Custom exception classes for the onboarding engine.

Validation problems are never raised; the validator returns them as a
field -> message mapping. Everything here describes collaborator or
programming failures.
"""

from typing import Optional, Dict, Any


class PortalError(Exception):
    """
    Base exception for all portal errors.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "UNKNOWN_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ConfigurationError(PortalError):
    """
    Raised when there is a configuration problem.
    """

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None
    ):
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details={"missing_keys": missing_keys or []}
        )


class StartupError(PortalError):
    """
    Raised when the application fails to start.
    """

    def __init__(self, message: str, component: Optional[str] = None):
        super().__init__(
            message=message,
            code="STARTUP_ERROR",
            details={"component": component}
        )


class BackendError(PortalError):
    """
    Raised when a remote collaborator cannot be reached or answers with an error.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        operation: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="BACKEND_ERROR",
            details={
                "status": status,
                "operation": operation
            }
        )
        self.status = status
        self.operation = operation


class PersistenceError(BackendError):
    """
    Raised when the session store fails to save, load, extend, recover or delete.
    """

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        operation: Optional[str] = None,
        status: Optional[int] = None
    ):
        super().__init__(
            message=message,
            status=status,
            operation=operation
        )
        self.code = "PERSISTENCE_ERROR"
        self.details["session_id"] = session_id
        self.session_id = session_id


class SessionClosedError(PersistenceError):
    """
    Raised when a write targets a session that was already abandoned or completed.
    """

    def __init__(self, session_id: str, operation: Optional[str] = None):
        super().__init__(
            message=f"Session {session_id} is closed",
            session_id=session_id,
            operation=operation
        )
        self.code = "SESSION_CLOSED"


class SideEffectError(PortalError):
    """
    Raised when a step side effect (role update, school/program/site creation,
    completion) fails. Blocks advancement; answers are kept for a retry.
    """

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        operation: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="SIDE_EFFECT_ERROR",
            details={
                "step": step,
                "operation": operation
            }
        )
        self.step = step
        self.operation = operation


class UnknownFieldError(PortalError):
    """
    Raised when an answer key outside the known answer set is written.
    """

    def __init__(self, fields: list):
        super().__init__(
            message=f"Unknown answer field(s): {', '.join(sorted(fields))}",
            code="UNKNOWN_FIELD",
            details={"fields": sorted(fields)}
        )
        self.fields = sorted(fields)


def handle_exception(error: Exception) -> Dict[str, Any]:
    """
    Convert any exception to a standardized error response.

    Args:
        error: The exception to handle

    Returns:
        Error dictionary
    """
    if isinstance(error, PortalError):
        return error.to_dict()

    return {
        "error": "INTERNAL_ERROR",
        "message": str(error),
        "details": {"type": type(error).__name__}
    }


def get_user_friendly_message(error: Exception) -> str:
    """
    Get a user-friendly error message.

    Args:
        error: The exception

    Returns:
        Message suitable for showing in the wizard
    """
    messages = {
        "CONFIGURATION_ERROR": "The onboarding service is misconfigured.",
        "BACKEND_ERROR": "We could not reach the server. Please try again.",
        "PERSISTENCE_ERROR": "Your progress could not be saved. You can keep going; we will retry.",
        "SESSION_CLOSED": "This onboarding session has already ended.",
        "SIDE_EFFECT_ERROR": "Something went wrong saving this step. Please try again.",
        "UNKNOWN_FIELD": "Some of the submitted data is not recognised.",
        "INTERNAL_ERROR": "An unexpected error occurred. Please try again."
    }

    if isinstance(error, SideEffectError) and error.message:
        return error.message

    if isinstance(error, PortalError):
        return messages.get(error.code, messages["INTERNAL_ERROR"])

    return messages["INTERNAL_ERROR"]
