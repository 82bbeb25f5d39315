"""Custom exceptions for the trading pipeline.

Venue calls do not raise across the adapter boundary (they return a
VenueResponse); these exceptions cover configuration and request
validation failures that abort a single unit of work.
"""


class TraderError(Exception):
    """Base exception for all pipeline errors."""


class ConfigurationError(TraderError):
    """Raised when a strategy record cannot be turned into a usable config."""


class CredentialsNotConfigured(ConfigurationError):
    """Raised when no active venue credential exists for a strategy owner."""


class StrategyNotFound(TraderError):
    """Raised when an alert references an unknown or inactive strategy."""


class WebhookSecretMismatch(TraderError):
    """Raised when an alert secret does not match the strategy's secret."""


class InvalidAlertError(TraderError):
    """Raised when an inbound alert payload is malformed."""


class InsufficientSizeError(TraderError):
    """Raised when the resolved position size is zero or negative."""
