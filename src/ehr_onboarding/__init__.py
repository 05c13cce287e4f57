"""EHR onboarding: FHIR connection validation for hospital integrations."""

__version__ = "0.1.0"
