"""Tests for the EHR onboarding service."""
