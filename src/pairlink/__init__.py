"""pairlink - device-pairing signaling relay."""

__version__ = "0.1.0"
