"""Base configuration settings."""

import os
import warnings
from typing import List

from cryptography.fernet import Fernet
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROTECTED_ENVIRONMENTS = ("production", "staging")


class Settings(BaseSettings):
    """Application settings.

    Note: encryption_key protects stored EHR client secrets and must be
    provisioned out of band in production.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "EHR Onboarding"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # Database
    database_url: str = "sqlite:///./ehr_onboarding.db"

    # Security
    encryption_key: str = Field(
        default_factory=lambda: os.getenv("ENCRYPTION_KEY", ""),
        description="Fernet key used to encrypt stored client secrets",
    )

    # Remote probe timeouts, in seconds
    fhir_request_timeout: float = 30.0
    oauth_request_timeout: float = 15.0
    smart_probe_timeout: float = 10.0

    # Validation behaviour
    required_fhir_resources: List[str] = Field(
        default_factory=lambda: ["Patient", "Observation"]
    )
    subscription_reason: str = "EHR Integration Test"

    # Identity defaults until the caller supplies a session
    default_hospital_id: str = "default"
    system_actor_id: str = "system"

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        """Require a key outside development and generate one otherwise."""
        if v:
            return v

        env = os.getenv("ENVIRONMENT", "development").lower()
        if env in _PROTECTED_ENVIRONMENTS:
            raise ValueError(
                f"encryption_key must be set in the {env} environment; "
                "stored client secrets cannot be protected without it"
            )
        generated = Fernet.generate_key().decode()
        warnings.warn(
            "encryption_key is not set. Generated a temporary key; "
            "secrets stored with it will be unreadable after restart.",
            stacklevel=2,
        )
        return generated

    @field_validator(
        "fhir_request_timeout", "oauth_request_timeout", "smart_probe_timeout"
    )
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Every outbound call carries a positive timeout."""
        if v <= 0:
            raise ValueError("timeouts must be greater than zero")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only console and json renderers exist."""
        v = v.lower()
        if v not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return v

    @property
    def is_production(self) -> bool:
        """Whether this is a protected deployment."""
        return self.environment.lower() in _PROTECTED_ENVIRONMENTS
