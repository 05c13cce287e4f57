"""Services for EHR onboarding."""
