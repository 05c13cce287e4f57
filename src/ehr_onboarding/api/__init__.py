"""HTTP API for EHR onboarding."""
