"""siso - ephemeral two-party messaging with view-once messages."""

__version__ = "1.0.0"
