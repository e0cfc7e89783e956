from __future__ import annotations

from typing import Any, Optional


class ObservabilityConfigError(Exception):
    """Base exception for observability configuration loading."""


class SourceUnavailableError(ObservabilityConfigError, ValueError):
    """No configuration text was provided by any source."""


class ConfigIOError(ObservabilityConfigError, OSError):
    """The configuration file named by the environment could not be read."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class MalformedConfigError(ObservabilityConfigError, ValueError):
    """The configuration text is not valid JSON."""


class SchemaViolationError(ObservabilityConfigError, ValueError):
    def __init__(self, message: str, *, field: str, value: Any = None) -> None:
        super().__init__(f"{field}: {message} (got {value!r})")
        self.field = field
        self.value = value


class FieldTypeError(SchemaViolationError):
    pass


class FieldRangeError(SchemaViolationError):
    pass


class UnknownEventTypeError(SchemaViolationError):
    pass


class CustomTagError(SchemaViolationError):
    pass
