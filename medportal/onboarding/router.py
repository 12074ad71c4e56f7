"""
Step Router - Decides which onboarding step comes next (or before).

Everything here is a pure function of its arguments: no I/O, no clock, no
store access. The orchestrator owns the state and asks the router.
"""

from typing import Optional, Dict, Any, Callable, Sequence, Collection

from medportal.onboarding.states import OnboardingStep, UserRole
from medportal.infra.utils import is_blank


Answers = Dict[str, Any]
RolePolicy = Callable[[Answers, Collection[OnboardingStep]], OnboardingStep]

ENTRY_STEPS = frozenset({
    OnboardingStep.WELCOME,
    OnboardingStep.ROLE_SELECTION,
})


def _has(answers: Answers, key: str) -> bool:
    return not is_blank(answers.get(key))


def is_fully_provisioned(role: Any, answers: Answers) -> bool:
    """Role, school and program are all known already."""
    return not is_blank(role) and _has(answers, "school_id") and _has(answers, "program_id")


def _school_admin(answers: Answers, history: Collection[OnboardingStep]) -> OnboardingStep:
    if not _has(answers, "school_id"):
        return OnboardingStep.SCHOOL_SETUP
    if not _has(answers, "program_id") and OnboardingStep.PROGRAM_SETUP not in history:
        return OnboardingStep.PROGRAM_SETUP
    if OnboardingStep.CLINICAL_SITE_SETUP not in history:
        return OnboardingStep.CLINICAL_SITE_SETUP
    return OnboardingStep.COMPLETE


def _student(answers: Answers, history: Collection[OnboardingStep]) -> OnboardingStep:
    if not _has(answers, "school_id"):
        return OnboardingStep.SCHOOL_SELECTION
    if not _has(answers, "program_id"):
        return OnboardingStep.PROGRAM_SELECTION
    return OnboardingStep.COMPLETE


def _clinical_staff(answers: Answers, history: Collection[OnboardingStep]) -> OnboardingStep:
    if OnboardingStep.AFFILIATION_SETUP not in history:
        return OnboardingStep.AFFILIATION_SETUP
    return OnboardingStep.COMPLETE


def _super_admin(answers: Answers, history: Collection[OnboardingStep]) -> OnboardingStep:
    return OnboardingStep.COMPLETE


def _unrecognized(answers: Answers, history: Collection[OnboardingStep]) -> OnboardingStep:
    if OnboardingStep.SCHOOL_SELECTION not in history:
        return OnboardingStep.SCHOOL_SELECTION
    return OnboardingStep.COMPLETE


ROLE_POLICIES: Dict[UserRole, RolePolicy] = {
    UserRole.SCHOOL_ADMIN: _school_admin,
    UserRole.STUDENT: _student,
    UserRole.CLINICAL_PRECEPTOR: _clinical_staff,
    UserRole.CLINICAL_SUPERVISOR: _clinical_staff,
    UserRole.SUPER_ADMIN: _super_admin,
}

_missing_policies = set(UserRole) - set(ROLE_POLICIES)
if _missing_policies:
    raise AssertionError(
        f"No routing policy for role(s): {sorted(r.value for r in _missing_policies)}"
    )


def next_step(
    role: Any,
    answers: Answers,
    current_step: OnboardingStep,
    history: Collection[OnboardingStep] = ()
) -> OnboardingStep:
    """
    Compute the step that follows current_step.

    Args:
        role: Selected role (UserRole, raw string or None)
        answers: Accumulated answers
        current_step: The step being left
        history: Steps already completed or skipped in this session

    Returns:
        The next step; always a member of the catalog
    """
    if current_step == OnboardingStep.COMPLETE:
        return OnboardingStep.COMPLETE

    if current_step in ENTRY_STEPS and is_fully_provisioned(role, answers):
        return OnboardingStep.COMPLETE

    if is_blank(role):
        return OnboardingStep.ROLE_SELECTION

    parsed = UserRole.parse(role)
    if parsed is None:
        return _unrecognized(answers, history)

    return ROLE_POLICIES[parsed](answers, history)


def initial_step(role: Any, answers: Answers) -> OnboardingStep:
    """First step for a fresh wizard: straight to 'complete' when provisioned."""
    if is_fully_provisioned(role, answers):
        return OnboardingStep.COMPLETE
    return OnboardingStep.WELCOME


_FALLBACK_PREVIOUS: Dict[OnboardingStep, OnboardingStep] = {
    OnboardingStep.ROLE_SELECTION: OnboardingStep.WELCOME,
    OnboardingStep.SCHOOL_SELECTION: OnboardingStep.WELCOME,
    OnboardingStep.PROGRAM_SELECTION: OnboardingStep.SCHOOL_SELECTION,
    OnboardingStep.SCHOOL_SETUP: OnboardingStep.WELCOME,
    OnboardingStep.PROGRAM_SETUP: OnboardingStep.SCHOOL_SETUP,
    OnboardingStep.CLINICAL_SITE_SETUP: OnboardingStep.PROGRAM_SETUP,
    OnboardingStep.AFFILIATION_SETUP: OnboardingStep.WELCOME,
}


def previous_step(
    current_step: OnboardingStep,
    path: Sequence[OnboardingStep] = ()
) -> Optional[OnboardingStep]:
    """
    Step that Back returns to, following the forward path actually taken.

    Args:
        current_step: The step being shown
        path: Steps left by moving forward, oldest first

    Returns:
        The previous step, or None when Back is not allowed
    """
    if current_step in (OnboardingStep.WELCOME, OnboardingStep.COMPLETE):
        return None

    trail = list(path)
    if current_step in trail:
        index = len(trail) - 1 - trail[::-1].index(current_step)
        trail = trail[:index]

    if trail:
        return trail[-1]

    return _FALLBACK_PREVIOUS.get(current_step)
