"""
Onboarding States - Step catalog, roles and session data structures.
"""

from enum import Enum
from typing import Optional, Dict, Any, List, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from medportal.config.constants import ROLE_DISPLAY_NAMES, ROLE_DESCRIPTIONS
from medportal.infra.utils import parse_datetime, to_iso


class UserRole(Enum):
    """Portal roles a user can pick during onboarding."""
    SUPER_ADMIN = "SUPER_ADMIN"
    SCHOOL_ADMIN = "SCHOOL_ADMIN"
    CLINICAL_PRECEPTOR = "CLINICAL_PRECEPTOR"
    CLINICAL_SUPERVISOR = "CLINICAL_SUPERVISOR"
    STUDENT = "STUDENT"

    @classmethod
    def parse(cls, value: Any) -> Optional["UserRole"]:
        """Return the role for a raw value, or None if it is not a known role."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @property
    def display_name(self) -> str:
        return ROLE_DISPLAY_NAMES.get(self.value, self.value.replace("_", " ").title())

    @property
    def description(self) -> str:
        return ROLE_DESCRIPTIONS.get(self.value, "")


class OnboardingStep(Enum):
    """Onboarding step enum, in catalog order."""
    WELCOME = "welcome"
    ROLE_SELECTION = "role-selection"
    SCHOOL_SELECTION = "school-selection"
    PROGRAM_SELECTION = "program-selection"
    SCHOOL_SETUP = "school-setup"
    PROGRAM_SETUP = "program-setup"
    CLINICAL_SITE_SETUP = "clinical-site-setup"
    AFFILIATION_SETUP = "affiliation-setup"
    COMPLETE = "complete"


class SessionStatus(Enum):
    """Lifecycle status of a persisted session."""
    ACTIVE = "active"
    EXPIRED = "expired"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class StepInfo:
    """Static description of one step."""
    title: str
    description: str
    progress_weight: int
    skippable: bool = False


STEP_ORDER: List[OnboardingStep] = list(OnboardingStep)

STEP_CATALOG: Dict[OnboardingStep, StepInfo] = {
    OnboardingStep.WELCOME: StepInfo("Welcome", "Getting started", 10),
    OnboardingStep.ROLE_SELECTION: StepInfo("Select Role", "Choose your role", 25),
    OnboardingStep.SCHOOL_SELECTION: StepInfo("Select School", "Choose your school", 50),
    OnboardingStep.PROGRAM_SELECTION: StepInfo("Select Program", "Choose your program", 75),
    OnboardingStep.SCHOOL_SETUP: StepInfo("School Setup", "Create your school", 40),
    OnboardingStep.PROGRAM_SETUP: StepInfo(
        "Program Setup", "Add an academic program", 60, skippable=True
    ),
    OnboardingStep.CLINICAL_SITE_SETUP: StepInfo(
        "Clinical Site", "Add a clinical site", 80, skippable=True
    ),
    OnboardingStep.AFFILIATION_SETUP: StepInfo("Affiliation", "Set up affiliation", 75),
    OnboardingStep.COMPLETE: StepInfo("Complete", "Setup complete", 100),
}


def get_step_info(step: OnboardingStep) -> StepInfo:
    """Look up a step's static description. Unknown steps raise KeyError."""
    return STEP_CATALOG[step]


def progress_percent(completed_steps: Iterable[OnboardingStep]) -> int:
    """Share of catalog steps (excluding 'complete') already completed, 0-100."""
    total = len(STEP_ORDER) - 1
    done = {s for s in completed_steps if s != OnboardingStep.COMPLETE}
    return round(len(done) / total * 100)


ANSWER_FIELDS = frozenset({
    "role",
    "school_id",
    "program_id",
    "school_name",
    "school_address",
    "program_name",
    "program_type",
    "program_duration",
    "program_description",
    "site_name",
    "site_address",
    "site_type",
    "site_capacity",
    "site_email",
    "site_phone",
})


def unknown_fields(answers: Dict[str, Any]) -> List[str]:
    """Keys outside the known answer set."""
    return sorted(k for k in answers if k not in ANSWER_FIELDS)


@dataclass
class UserProfile:
    """What the identity provider already knows about the user."""
    user_id: str
    role: Optional[UserRole] = None
    school_id: Optional[str] = None
    program_id: Optional[str] = None
    onboarding_completed: bool = False

    def is_fully_provisioned(self) -> bool:
        """True when role, school and program all came from an invitation."""
        return bool(self.role and self.school_id and self.program_id)

    def to_answers(self) -> Dict[str, Any]:
        """Seed answers for a fresh wizard."""
        answers: Dict[str, Any] = {}
        if self.role:
            answers["role"] = self.role.value
        if self.school_id:
            answers["school_id"] = self.school_id
        if self.program_id:
            answers["program_id"] = self.program_id
        return answers


@dataclass
class StepOptions:
    """Choices currently offered by the selection steps."""
    schools: List[Dict[str, Any]] = field(default_factory=list)
    programs: List[Dict[str, Any]] = field(default_factory=list)

    def has_school(self, school_id: str) -> bool:
        return any(s.get("id") == school_id for s in self.schools)

    def get_program(self, program_id: str) -> Optional[Dict[str, Any]]:
        for program in self.programs:
            if program.get("id") == program_id:
                return program
        return None

    def programs_for_school(self, school_id: Optional[str]) -> List[Dict[str, Any]]:
        """Programs whose parent school matches the selection."""
        return [p for p in self.programs if p.get("school_id") == school_id]


@dataclass
class Session:
    """Client-side copy of a persisted onboarding session."""
    session_id: str
    current_step: OnboardingStep
    expires_at: datetime
    created_at: datetime
    updated_at: Optional[datetime] = None
    answers: Dict[str, Any] = field(default_factory=dict)
    completed_steps: List[OnboardingStep] = field(default_factory=list)
    skipped_steps: List[OnboardingStep] = field(default_factory=list)
    path: List[OnboardingStep] = field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "session_id": self.session_id,
            "current_step": self.current_step.value,
            "answers": dict(self.answers),
            "completed_steps": [s.value for s in self.completed_steps],
            "skipped_steps": [s.value for s in self.skipped_steps],
            "path": [s.value for s in self.path],
            "status": self.status.value,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "expires_at": to_iso(self.expires_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        """Create from dictionary."""
        expires_at = parse_datetime(data["expires_at"])
        updated_at = parse_datetime(data.get("updated_at"))
        created_at = parse_datetime(data.get("created_at")) or updated_at or expires_at
        completed = [OnboardingStep(s) for s in data.get("completed_steps") or []]
        path = data.get("path")
        return cls(
            session_id=data["session_id"],
            current_step=OnboardingStep(data.get("current_step", "welcome")),
            answers=dict(data.get("answers") or {}),
            completed_steps=completed,
            skipped_steps=[OnboardingStep(s) for s in data.get("skipped_steps") or []],
            path=[OnboardingStep(s) for s in path] if path is not None else list(completed),
            status=SessionStatus(data.get("status", "active")),
            created_at=created_at,
            updated_at=updated_at,
            expires_at=expires_at
        )

    def seconds_until_expiry(self, now: datetime) -> int:
        """Whole seconds left before expiry, clamped at zero."""
        remaining = (self.expires_at - now).total_seconds()
        return max(0, int(remaining))

    def is_expired(self, now: datetime) -> bool:
        """Check if the session has passed its expiry time."""
        return now >= self.expires_at

    def is_active(self) -> bool:
        """Check if session is still open (not completed, not abandoned)."""
        return self.status not in [
            SessionStatus.COMPLETED,
            SessionStatus.ABANDONED
        ]
