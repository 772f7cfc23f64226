"""Errors raised by the conversation core before any backend is contacted."""


class ConfigurationError(Exception):
    """Raised when a turn cannot start: bad mode, lineup, backend or state."""
