"""
Preprocessor Exceptions

Raised only at load or lookup time. Per-record problems never raise:
they are captured into NormalizationResult errors instead.
"""

from typing import Optional


class PreprocessorError(Exception):
    """Base class for all preprocessor errors."""
    pass


class ConfigurationError(PreprocessorError):
    """Raised when configuration values are out of range."""

    def __init__(self, field_name: str, value, reason: str):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Invalid configuration for '{field_name}' ({value!r}): {reason}")


class TaxonomyError(PreprocessorError):
    """Raised when the category taxonomy cannot be loaded."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{message} [{path}]"
        super().__init__(message)


class RuleStoreError(PreprocessorError):
    """Raised when a rule file is malformed or a rule id is unknown."""
    pass


class UnknownStoreError(PreprocessorError):
    """Raised when no normalizer is registered for a store."""

    def __init__(self, store_id: str, known: Optional[list] = None):
        self.store_id = store_id
        known_list = ", ".join(sorted(known)) if known else "none"
        super().__init__(f"No normalizer registered for store '{store_id}' (known: {known_list})")
