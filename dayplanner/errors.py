from __future__ import annotations


class ConfigurationError(ValueError):
    """A recurrence pattern, series or exception failed validation."""


class NotFoundError(LookupError):
    """The requested series, template or occurrence does not exist."""


class ConflictError(RuntimeError):
    """A series was modified since it was read."""
