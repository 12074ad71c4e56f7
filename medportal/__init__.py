"""
Clinical Portal Onboarding
A role-branching onboarding workflow engine with expiring, auto-saved sessions.
"""

__version__ = "1.0.0"
__author__ = "Clinical Portal Team"

from medportal.config.settings import Settings
from medportal.infra.logger import setup_logger

__all__ = ["Settings", "setup_logger", "__version__"]
