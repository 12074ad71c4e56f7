"""
Step Validator - Field-level checks run before a step may be left.

validate() never raises and never touches the network; it is safe to call
on every keystroke.
"""

from typing import Dict, Any, Optional, Callable

from medportal.config.constants import VALIDATION_MESSAGES
from medportal.onboarding.states import (
    OnboardingStep,
    StepOptions,
    UserRole,
    unknown_fields,
)
from medportal.infra.utils import is_blank, parse_positive_int


Answers = Dict[str, Any]
ErrorSet = Dict[str, str]


def _role_selection(answers: Answers, options: Optional[StepOptions]) -> ErrorSet:
    if UserRole.parse(answers.get("role")) is None:
        return {"role": VALIDATION_MESSAGES["role"]}
    return {}


def _school_choice(
    answers: Answers,
    options: Optional[StepOptions],
    empty_message: str
) -> ErrorSet:
    school_id = answers.get("school_id")
    if is_blank(school_id):
        return {"school_id": empty_message}
    if options is not None and not options.has_school(school_id):
        return {"school_id": VALIDATION_MESSAGES["school_id_unavailable"]}
    return {}


def _school_selection(answers: Answers, options: Optional[StepOptions]) -> ErrorSet:
    return _school_choice(answers, options, VALIDATION_MESSAGES["school_id"])


def _affiliation_setup(answers: Answers, options: Optional[StepOptions]) -> ErrorSet:
    return _school_choice(answers, options, VALIDATION_MESSAGES["affiliation"])


def _program_selection(answers: Answers, options: Optional[StepOptions]) -> ErrorSet:
    program_id = answers.get("program_id")
    if is_blank(program_id):
        return {"program_id": VALIDATION_MESSAGES["program_id"]}

    if options is None:
        return {}

    program = options.get_program(program_id)
    if program is None:
        return {"program_id": VALIDATION_MESSAGES["program_id_unavailable"]}
    if program.get("school_id") != answers.get("school_id"):
        return {"program_id": VALIDATION_MESSAGES["program_id_mismatch"]}
    return {}


def _school_setup(answers: Answers, options: Optional[StepOptions]) -> ErrorSet:
    if is_blank(answers.get("school_name")):
        return {"school_name": VALIDATION_MESSAGES["school_name"]}
    return {}


def _program_setup(answers: Answers, options: Optional[StepOptions]) -> ErrorSet:
    errors: ErrorSet = {}

    if is_blank(answers.get("program_name")):
        errors["program_name"] = VALIDATION_MESSAGES["program_name"]

    if is_blank(answers.get("program_type")):
        errors["program_type"] = VALIDATION_MESSAGES["program_type"]

    duration = answers.get("program_duration")
    if duration is not None and parse_positive_int(duration) is None:
        errors["program_duration"] = VALIDATION_MESSAGES["program_duration"]

    return errors


def _clinical_site_setup(answers: Answers, options: Optional[StepOptions]) -> ErrorSet:
    errors: ErrorSet = {}

    if is_blank(answers.get("site_name")):
        errors["site_name"] = VALIDATION_MESSAGES["site_name"]

    if is_blank(answers.get("site_address")):
        errors["site_address"] = VALIDATION_MESSAGES["site_address"]

    capacity = answers.get("site_capacity")
    if capacity is not None and parse_positive_int(capacity) is None:
        errors["site_capacity"] = VALIDATION_MESSAGES["site_capacity"]

    return errors


STEP_RULES: Dict[OnboardingStep, Callable[[Answers, Optional[StepOptions]], ErrorSet]] = {
    OnboardingStep.ROLE_SELECTION: _role_selection,
    OnboardingStep.SCHOOL_SELECTION: _school_selection,
    OnboardingStep.PROGRAM_SELECTION: _program_selection,
    OnboardingStep.AFFILIATION_SETUP: _affiliation_setup,
    OnboardingStep.SCHOOL_SETUP: _school_setup,
    OnboardingStep.PROGRAM_SETUP: _program_setup,
    OnboardingStep.CLINICAL_SITE_SETUP: _clinical_site_setup,
}


def validate(
    step: OnboardingStep,
    answers: Answers,
    options: Optional[StepOptions] = None
) -> ErrorSet:
    """
    Validate the answers required to leave a step.

    Args:
        step: The step being left
        answers: Current answer set
        options: Available schools/programs; skips availability checks if None

    Returns:
        Mapping of field name to error message (empty when valid)
    """
    errors: ErrorSet = {
        name: VALIDATION_MESSAGES["unknown_field"]
        for name in unknown_fields(answers)
    }

    rule = STEP_RULES.get(step)
    if rule is not None:
        errors.update(rule(answers, options))

    return errors


def is_valid(
    step: OnboardingStep,
    answers: Answers,
    options: Optional[StepOptions] = None
) -> bool:
    """Check whether a step may be left with the given answers."""
    return not validate(step, answers, options)
