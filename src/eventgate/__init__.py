"""eventgate: human-approved calendar writes for an untrusted assistant agent."""

__version__ = "0.1.0"
