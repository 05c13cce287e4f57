"""Configuration module for EHR onboarding."""

from ehr_onboarding.config.base import Settings
from ehr_onboarding.config.loader import get_settings

__all__ = ["Settings", "get_settings"]
