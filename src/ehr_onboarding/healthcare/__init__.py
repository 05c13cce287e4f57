"""FHIR connection validation pipeline."""
