"""
Main entry point for the clinical portal onboarding engine.

Wires the REST backends into onboarding workflows. Run as a module to check
where the configured identity's onboarding currently stands.
"""

import asyncio
import sys
from typing import Optional, List, Callable
from datetime import datetime

from medportal.backend.analytics import HttpAnalyticsBackend
from medportal.backend.base import SessionBackend
from medportal.backend.client import ApiClient
from medportal.backend.entities import HttpEntityBackend
from medportal.backend.sessions import HttpSessionBackend
from medportal.config.settings import Settings, get_settings
from medportal.config.env import load_environment
from medportal.config.constants import APP_NAME, VERSION
from medportal.onboarding.analytics import AnalyticsEmitter
from medportal.onboarding.session import SessionGateway
from medportal.onboarding.states import StepOptions, UserProfile, get_step_info
from medportal.onboarding.store import SessionStore
from medportal.onboarding.workflow import OnboardingWorkflow, WorkflowConfig
from medportal.infra.logger import setup_logger, get_logger
from medportal.infra.exceptions import StartupError, handle_exception
from medportal.infra.utils import utc_now


logger = get_logger(__name__)


class Application:
    """Builds and owns the backends shared by onboarding workflows."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_backend: Optional[SessionBackend] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.settings = settings or get_settings()
        self.clock = clock
        self.api_client: Optional[ApiClient] = None
        self.session_backend = session_backend
        self.entity_backend: Optional[HttpEntityBackend] = None
        self.analytics_backend: Optional[HttpAnalyticsBackend] = None
        self._workflows: List[OnboardingWorkflow] = []

    async def initialize(self) -> None:
        """Initialize all application components."""
        logger.info(f"Initializing {APP_NAME} v{VERSION}...")

        try:
            self.api_client = ApiClient(
                base_url=self.settings.api_base_url,
                token=self.settings.api_token,
                timeout=self.settings.request_timeout_seconds,
                retries=self.settings.request_retries
            )
            logger.info(f"API client configured for {self.settings.api_base_url}")

            if self.session_backend is None:
                self.session_backend = HttpSessionBackend(self.api_client)
            self.entity_backend = HttpEntityBackend(self.api_client)
            self.analytics_backend = HttpAnalyticsBackend(self.api_client)

            logger.info("All components initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize application: {e}")
            raise StartupError(f"Application initialization failed: {e}", component="backend")

    def create_workflow(self, options: Optional[StepOptions] = None) -> OnboardingWorkflow:
        """
        Build a fresh workflow with its own store and gateway.

        Args:
            options: Schools/programs offered by the selection steps

        Returns:
            An uninitialized workflow; call initialize(profile) on it
        """
        if self.api_client is None:
            raise StartupError("Application is not initialized", component="application")

        config = WorkflowConfig.from_settings(self.settings)
        gateway = SessionGateway(
            self.session_backend,
            ttl_hours=self.settings.session_ttl_hours,
            clock=self.clock
        )
        analytics = AnalyticsEmitter(
            self.analytics_backend,
            enabled=config.enable_analytics,
            timeout=self.settings.analytics_timeout_seconds,
            clock=self.clock
        )

        workflow = OnboardingWorkflow(
            store=SessionStore(clock=self.clock),
            gateway=gateway,
            entities=self.entity_backend,
            analytics=analytics,
            config=config,
            options=options
        )
        self._workflows.append(workflow)
        return workflow

    async def shutdown(self) -> None:
        """Gracefully shutdown the application."""
        logger.info("Shutting down application...")

        for workflow in self._workflows:
            await workflow.close()
        self._workflows = []

        if self.api_client:
            await self.api_client.close()
            logger.info("API client closed")

        logger.info("Application shutdown complete")


async def main() -> None:
    """Main entry point."""
    env_file = load_environment()
    settings = get_settings()
    setup_logger(settings.log_level, settings.log_file, settings.log_format, force=True)
    if env_file:
        logger.info(f"Loaded environment from {env_file}")

    app = Application(settings)

    try:
        await app.initialize()
        workflow = app.create_workflow()
        step = await workflow.initialize(UserProfile(user_id="me"))
        info = get_step_info(step)

        logger.info(f"Current step: {info.title} ({step.value}), progress {workflow.progress}%")
        if workflow.notice:
            logger.info(workflow.notice)
        if workflow.warning:
            logger.warning(workflow.warning)

    except StartupError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Unexpected error: {handle_exception(e)}")
        sys.exit(1)
    finally:
        await app.shutdown()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
