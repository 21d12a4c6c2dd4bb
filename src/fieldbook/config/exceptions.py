"""Configuration exceptions."""

from fieldbook.errors import FieldbookError


class ConfigError(FieldbookError):
    """Raised when configuration data cannot be read or validated."""
