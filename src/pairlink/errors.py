"""Base exceptions for the pairlink relay."""


class PairlinkError(Exception):
    """Base exception for all pairlink errors."""

    pass


class MessageError(PairlinkError):
    """Inbound envelope could not be decoded."""

    pass


class ConfigError(PairlinkError):
    """Configuration value is invalid."""

    pass
