"""Core Exceptions Module.

This module defines the exceptions raised by the EHR onboarding subsystem.
Remote probe failures are never raised; they are reported as probe results.
"""

from typing import Optional


class EhrOnboardingError(Exception):
    """Base exception for all EHR onboarding errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        """Initialize exception.

        Args:
            message: Error message
            code: Optional error code
        """
        super().__init__(message)
        self.message = message
        self.code = code or "EHR_ONBOARDING_ERROR"


class ConfigurationError(EhrOnboardingError):
    """Raised when a connection configuration is invalid or incomplete."""

    def __init__(self, message: str):
        """Initialize ConfigurationError."""
        super().__init__(message, "CONFIGURATION_ERROR")


class DecryptionError(EhrOnboardingError):
    """Raised when a stored secret cannot be decrypted."""

    def __init__(self, message: str = "Stored credential could not be decrypted"):
        """Initialize DecryptionError."""
        super().__init__(message, "DECRYPTION_ERROR")


class ConnectionNotFoundError(EhrOnboardingError):
    """Raised when a connection id does not resolve to a live record."""

    def __init__(self, connection_id: str):
        """Initialize ConnectionNotFoundError."""
        super().__init__(f"Connection {connection_id} not found", "CONNECTION_NOT_FOUND")
        self.connection_id = connection_id


class InvalidStatusTransitionError(EhrOnboardingError):
    """Raised when a connection status change is not permitted."""

    def __init__(self, current: str, target: str):
        """Initialize InvalidStatusTransitionError."""
        super().__init__(
            f"Cannot move connection from '{current}' to '{target}'",
            "INVALID_STATUS_TRANSITION",
        )
        self.current = current
        self.target = target
