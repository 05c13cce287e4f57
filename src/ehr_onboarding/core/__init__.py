"""Core infrastructure for EHR onboarding."""
