"""Test doubles for remote EHR systems."""

from .fhir_server import StubFhirServer

__all__ = ["StubFhirServer"]
