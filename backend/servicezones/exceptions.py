"""Domain exceptions for ingestion, synthesis, assignment and queries."""
from typing import Any, Iterable, Optional


class ServiceZonesError(Exception):
    """Base class for all domain errors."""


class SkippableInputError(ServiceZonesError):
    """A single source item is unusable; the batch skips it and carries on."""

    def __init__(self, reason: str, identifier: Optional[str] = None):
        self.reason = reason
        self.identifier = identifier
        super().__init__(f"{identifier}: {reason}" if identifier else reason)


class GeometryDegradation(UserWarning):
    """Simplification or union fell back to a less optimized geometry."""


class ConfigurationError(ServiceZonesError):
    """A boundary or area required downstream does not exist."""


class AreaNotFoundError(ConfigurationError):
    """An operational area slug could not be resolved."""

    def __init__(self, slug: str, known_slugs: Iterable[str] = ()):
        self.slug = slug
        self.known_slugs = sorted(known_slugs)
        known = ", ".join(self.known_slugs) or "none"
        super().__init__(f"Operational area '{slug}' not found (known slugs: {known})")


class QueryValidationError(ServiceZonesError):
    """Malformed query parameters, rejected before execution."""

    def __init__(self, errors: list[dict[str, Any]], error_code: str = "INVALID_QUERY"):
        self.errors = errors
        self.error_code = error_code
        messages = "; ".join(f"{e.get('field')}: {e.get('message')}" for e in errors)
        super().__init__(messages or "Invalid query")


class SlugConflictError(ServiceZonesError):
    """The store rejected a shop slug already taken within the area."""

    def __init__(self, area_id: int, slug: str):
        self.area_id = area_id
        self.slug = slug
        super().__init__(f"Slug '{slug}' already exists in operational area {area_id}")


class ConcurrencyConflictError(ServiceZonesError):
    """A slug race persisted after the suffixed retry."""
