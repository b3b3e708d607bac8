"""
Error taxonomy for the alert engine.

Every failure the engine surfaces to callers is one of these types. Storage
and transport clients keep their own low-level exceptions; the collaborator
adapters translate them into this hierarchy at the boundary.

Hierarchy:
    AlertEngineError
    ├── ValidationError        malformed identifiers or inputs
    ├── NotFoundError          campaign or alert absent
    ├── PermissionDeniedError  access to another recipient's alert
    ├── ProviderError          MetricsProvider / CampaignSource failure
    ├── PersistenceError       AlertStore failure
    │   └── StoreUnavailableError  store unreachable, aborts a run
    ├── ChannelError           notification channel failure
    └── PreconditionError      operation not allowed in the current state
"""

import re
from typing import Any, Iterable, List, Optional


class AlertEngineError(Exception):
    """
    Base class for alert engine errors.

    Attributes:
        message: Human-readable description.
        details: Extra context for logging.
    """

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(AlertEngineError):
    """Raised when an identifier or input is malformed. No side effects happen."""

    pass


class NotFoundError(AlertEngineError):
    """Raised when a campaign or alert does not exist."""

    pass


class PermissionDeniedError(AlertEngineError):
    """Raised when a recipient acts on an alert they do not own."""

    pass


class ProviderError(AlertEngineError):
    """Raised when metrics or campaigns cannot be fetched."""

    pass


class PersistenceError(AlertEngineError):
    """Raised when the alert store fails an operation."""

    pass


class StoreUnavailableError(PersistenceError):
    """Raised when the alert store cannot be reached at all."""

    pass


class ChannelError(AlertEngineError):
    """Raised when a notification channel fails to deliver."""

    pass


class PreconditionError(AlertEngineError):
    """Raised when an operation is not allowed in the alert's current state."""

    pass


# Identifiers are opaque strings (UUIDs, numeric ids, slugs)
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")


def validate_identifier(value: Optional[str], field: str = "id") -> str:
    """
    Validate an opaque identifier.

    Args:
        value: Identifier to check.
        field: Field name used in the error message.

    Returns:
        str: The identifier, stripped of surrounding whitespace.

    Raises:
        ValidationError: If the identifier is empty or malformed.

    Example:
        >>> validate_identifier("cmp-42", "campaign_id")
        'cmp-42'
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    cleaned = value.strip()
    if not _IDENTIFIER_PATTERN.match(cleaned):
        raise ValidationError(f"Malformed {field}: {value!r}", field=field)
    return cleaned


def validate_identifiers(values: Iterable[str], field: str = "ids") -> List[str]:
    """
    Validate a non-empty collection of identifiers.

    Raises:
        ValidationError: If the collection is empty or any entry is malformed.
    """
    if isinstance(values, str):
        raise ValidationError(f"{field} must be a list of identifiers", field=field)
    cleaned = [validate_identifier(v, field) for v in values]
    if not cleaned:
        raise ValidationError(f"{field} must not be empty", field=field)
    return cleaned
