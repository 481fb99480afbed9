"""Zone Relay: notification delivery, messaging and presence service."""

__version__ = "0.1.0"
