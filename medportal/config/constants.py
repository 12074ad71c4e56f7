"""
Constants - Application-wide constants and text templates.
"""

VERSION = "1.0.0"
APP_NAME = "Clinical Portal Onboarding"

SESSION_TTL_HOURS = 24
AUTOSAVE_DEBOUNCE_SECONDS = 2.0
AUTOSAVE_INTERVAL_SECONDS = 30.0

ANALYTICS_TIMEOUT_SECONDS = 5.0

REQUEST_TIMEOUT_SECONDS = 30
REQUEST_RETRIES = 3

EXPIRY_WARNING_SECONDS = 300
EXPIRY_TICK_SECONDS = 1.0

DEFAULT_PROGRAM_DURATION = 4
DEFAULT_SITE_TYPE = "HOSPITAL"
DEFAULT_SITE_CAPACITY = 10

ROLE_DISPLAY_NAMES = {
    "SUPER_ADMIN": "System Administrator",
    "SCHOOL_ADMIN": "School Administrator",
    "CLINICAL_PRECEPTOR": "Clinical Preceptor",
    "CLINICAL_SUPERVISOR": "Clinical Supervisor",
    "STUDENT": "Student"
}

ROLE_DESCRIPTIONS = {
    "STUDENT": "Track your clinical rotations, competencies, and progress",
    "CLINICAL_SUPERVISOR": "Assess student competencies and provide specialized oversight",
    "CLINICAL_PRECEPTOR": "Supervise students, approve time records, and conduct evaluations",
    "SCHOOL_ADMIN": "Manage school programs, students, and clinical partnerships",
    "SUPER_ADMIN": "Administer the whole platform"
}

VALIDATION_MESSAGES = {
    "role": "Please select a role",
    "school_id": "Please select a school",
    "school_id_unavailable": "The selected school is not available",
    "affiliation": "Please select a school affiliation",
    "program_id": "Please select a program",
    "program_id_unavailable": "The selected program is not available",
    "program_id_mismatch": "The selected program does not belong to the selected school",
    "school_name": "Please enter a school name",
    "program_name": "Please enter a program name",
    "program_type": "Please select a program type",
    "program_duration": "Program duration must be a positive whole number",
    "site_name": "Please enter a site name",
    "site_address": "Please enter a site address",
    "site_capacity": "Site capacity must be a positive whole number",
    "unknown_field": "Unknown field"
}

WORKFLOW_MESSAGES = {
    "resumed": "Resumed your onboarding progress",
    "abandoned": "Session abandoned. Starting fresh.",
    "completed": "Onboarding completed successfully!",
    "save_failed": "Failed to save progress",
    "extend_failed": "Failed to extend session",
    "recover_failed": "Failed to recover session",
    "load_failed": "Failed to resume session",
    "abandon_failed": "Failed to abandon session",
    "expired": "Your onboarding session has expired. You can recover your progress and continue where you left off."
}

API_ROUTES = {
    "session": "/api/onboarding/session",
    "session_extend": "/api/onboarding/session/extend",
    "session_recover": "/api/onboarding/session/recover",
    "analytics": "/api/onboarding/analytics",
    "user_update": "/api/user/update",
    "onboarding_complete": "/api/user/onboarding-complete",
    "schools_create": "/api/schools/create",
    "programs": "/api/programs",
    "clinical_sites": "/api/clinical-sites"
}
