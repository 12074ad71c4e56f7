"""
Settings - Application configuration with validation.
"""

from typing import Optional
from dataclasses import dataclass

from medportal.config import constants
from medportal.config.env import get_env, get_env_bool, get_env_float, get_env_int
from medportal.infra.exceptions import ConfigurationError


@dataclass
class Settings:
    """
    Application settings loaded from environment variables.
    """

    api_base_url: str = ""
    api_token: str = ""
    request_timeout_seconds: int = constants.REQUEST_TIMEOUT_SECONDS
    request_retries: int = constants.REQUEST_RETRIES

    session_ttl_hours: float = constants.SESSION_TTL_HOURS
    autosave_debounce_seconds: float = constants.AUTOSAVE_DEBOUNCE_SECONDS
    autosave_interval_seconds: float = constants.AUTOSAVE_INTERVAL_SECONDS
    analytics_timeout_seconds: float = constants.ANALYTICS_TIMEOUT_SECONDS
    expiry_warning_seconds: int = constants.EXPIRY_WARNING_SECONDS

    enable_analytics: bool = True
    enable_session_persistence: bool = True
    enable_auto_save: bool = True

    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None

    environment: str = "development"
    debug: bool = False

    def __post_init__(self):
        """Validate settings after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate required settings."""
        errors = []
        missing = []

        if not self.api_base_url:
            errors.append("PORTAL_API_URL is required")
            missing.append("PORTAL_API_URL")
        elif not self.api_base_url.startswith(("http://", "https://")):
            errors.append(f"PORTAL_API_URL must be an http(s) URL: {self.api_base_url}")

        if self.session_ttl_hours <= 0:
            errors.append("SESSION_TTL_HOURS must be positive")

        if self.autosave_debounce_seconds < 0:
            errors.append("AUTOSAVE_DEBOUNCE_SECONDS must not be negative")

        if self.request_retries < 1:
            errors.append("REQUEST_RETRIES must be at least 1")

        if errors and self.environment != "test":
            raise ConfigurationError(
                "Configuration errors:\n" + "\n".join(f"- {e}" for e in errors),
                missing_keys=missing
            )

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        return cls(
            api_base_url=get_env("PORTAL_API_URL", "").rstrip("/"),
            api_token=get_env("PORTAL_API_TOKEN", ""),
            request_timeout_seconds=get_env_int(
                "REQUEST_TIMEOUT_SECONDS",
                constants.REQUEST_TIMEOUT_SECONDS
            ),
            request_retries=get_env_int("REQUEST_RETRIES", constants.REQUEST_RETRIES),
            session_ttl_hours=get_env_float(
                "SESSION_TTL_HOURS",
                constants.SESSION_TTL_HOURS
            ),
            autosave_debounce_seconds=get_env_float(
                "AUTOSAVE_DEBOUNCE_SECONDS",
                constants.AUTOSAVE_DEBOUNCE_SECONDS
            ),
            autosave_interval_seconds=get_env_float(
                "AUTOSAVE_INTERVAL_SECONDS",
                constants.AUTOSAVE_INTERVAL_SECONDS
            ),
            analytics_timeout_seconds=get_env_float(
                "ANALYTICS_TIMEOUT_SECONDS",
                constants.ANALYTICS_TIMEOUT_SECONDS
            ),
            expiry_warning_seconds=get_env_int(
                "EXPIRY_WARNING_SECONDS",
                constants.EXPIRY_WARNING_SECONDS
            ),
            enable_analytics=get_env_bool("ENABLE_ANALYTICS", True),
            enable_session_persistence=get_env_bool("ENABLE_SESSION_PERSISTENCE", True),
            enable_auto_save=get_env_bool("ENABLE_AUTO_SAVE", True),
            log_level=get_env("LOG_LEVEL", "INFO"),
            log_file=get_env("LOG_FILE"),
            environment=get_env("ENVIRONMENT", "development"),
            debug=get_env_bool("DEBUG", False)
        )

    @property
    def session_ttl_seconds(self) -> int:
        """Session time-to-live in whole seconds."""
        return int(self.session_ttl_hours * 3600)

    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    def to_dict(self) -> dict:
        """Convert to dictionary (excluding sensitive data)."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_base_url": self.api_base_url,
            "log_level": self.log_level,
            "session_ttl_hours": self.session_ttl_hours,
            "autosave_debounce_seconds": self.autosave_debounce_seconds,
            "enable_analytics": self.enable_analytics,
            "enable_session_persistence": self.enable_session_persistence,
            "enable_auto_save": self.enable_auto_save
        }


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global _settings
    _settings = Settings.from_env()
    return _settings
