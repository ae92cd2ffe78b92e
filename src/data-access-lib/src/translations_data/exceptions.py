"""
translations_data.exceptions — Store and query failure types.

Store failures carry a structured kind so callers never need to inspect
driver messages.  StoreError.from_message classifies raw driver messages
by substring, for errors that arrive without a kind.
"""

from __future__ import annotations

from enum import StrEnum

_DUPLICATE_KEY_MARKER = "duplicate key"
_MISSING_REFERENCE_MARKER = "is not present in table"


class StoreErrorKind(StrEnum):
    DUPLICATE_KEY = "duplicate_key"
    MISSING_REFERENCE = "missing_reference"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class StoreError(Exception):
    """
    Raised by TenantScopedStore when a store operation fails.

    Attributes:
        kind:  Structured failure classification.
        field: Document field involved in a DUPLICATE_KEY / MISSING_REFERENCE failure.
        value: Offending value of that field.
    """

    def __init__(
        self,
        kind: StoreErrorKind,
        message: str,
        *,
        field: str | None = None,
        value: str | None = None,
    ) -> None:
        self.kind = kind
        self.field = field
        self.value = value
        super().__init__(message)

    @classmethod
    def from_message(cls, message: str) -> StoreError:
        """Classify a raw driver message by substring."""
        if _DUPLICATE_KEY_MARKER in message:
            return cls(StoreErrorKind.DUPLICATE_KEY, message)
        if _MISSING_REFERENCE_MARKER in message:
            return cls(StoreErrorKind.MISSING_REFERENCE, message)
        return cls(StoreErrorKind.UNKNOWN, message)


class QuerySyntaxError(ValueError):
    """Raised by compile_filter when a filter expression cannot be parsed."""

    def __init__(self, message: str, *, expression: str, position: int | None = None) -> None:
        self.expression = expression
        self.position = position
        if position is not None:
            message = f"{message} at position {position}"
        super().__init__(message)
