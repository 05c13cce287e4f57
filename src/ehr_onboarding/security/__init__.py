"""Security helpers for EHR onboarding."""
