"""
Error taxonomy for the account, token and analytics layers.

Provider errors carry the identity provider's own message and are never
retried automatically; the caller decides whether to restart the flow.
Decryption errors mean "token unusable" and are not retryable either.
"""
from __future__ import annotations

from typing import Any


class SocialPulseError(Exception):
    """Base class for all typed failures raised by the service."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(SocialPulseError):
    """
    A required secret (client id/secret, redirect URI, encryption key) is
    missing. Treated as fatal: raised at startup, never papered over per
    request.
    """

    def __init__(self, message: str, config_key: str | None = None):
        super().__init__(message, {"config_key": config_key} if config_key else None)
        self.config_key = config_key


class ProviderError(SocialPulseError):
    """The identity provider rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.status_code = status_code


class TokenExchangeError(ProviderError):
    """Authorization code could not be exchanged for a short-lived token."""


class TokenUpgradeError(ProviderError):
    """Short-lived token could not be upgraded to a long-lived one."""


class TokenRefreshError(ProviderError):
    """Long-lived token could not be refreshed."""


class ProfileFetchError(ProviderError):
    """Profile fields could not be fetched with the given token."""


class InsightsFetchError(ProviderError):
    """Insights or media listing could not be fetched."""


class DecryptionError(SocialPulseError):
    """Stored token blob is malformed, tampered with, or encrypted under another key."""


class DataAccessError(SocialPulseError):
    """The backing store failed a read or write."""


class ValidationError(SocialPulseError):
    """Caller supplied a malformed payload; rejected before any write."""
