"""
Onboarding module - The onboarding workflow engine.
"""

from medportal.onboarding.states import (
    UserRole,
    OnboardingStep,
    SessionStatus,
    Session,
    StepOptions,
    UserProfile,
    get_step_info,
)
from medportal.onboarding.router import next_step, previous_step, initial_step
from medportal.onboarding.validator import validate, is_valid
from medportal.onboarding.store import SessionStore, StoreChange
from medportal.onboarding.session import SessionGateway
from medportal.onboarding.expiry import ExpiryMonitor, ExpiryStatus
from medportal.onboarding.autosave import AutoSaveScheduler
from medportal.onboarding.analytics import AnalyticsEmitter, AnalyticsEventType
from medportal.onboarding.workflow import OnboardingWorkflow, WorkflowConfig, StepResult

__all__ = [
    "UserRole",
    "OnboardingStep",
    "SessionStatus",
    "Session",
    "StepOptions",
    "UserProfile",
    "get_step_info",
    "next_step",
    "previous_step",
    "initial_step",
    "validate",
    "is_valid",
    "SessionStore",
    "StoreChange",
    "SessionGateway",
    "ExpiryMonitor",
    "ExpiryStatus",
    "AutoSaveScheduler",
    "AnalyticsEmitter",
    "AnalyticsEventType",
    "OnboardingWorkflow",
    "WorkflowConfig",
    "StepResult"
]
