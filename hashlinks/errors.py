"""
HashLinks - Error Taxonomy

Two tiers:
  thrown    ValidationError, TransportError/SyncError, NotFoundError, IntegrityError
  as data   ReferenceResolutionError (recorded per reference),
            CompositionError (returned as a list of strings)
"""

from __future__ import annotations


class HashLinksError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(HashLinksError):
    """Malformed registration or operation payload. Never retried."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class TransportError(HashLinksError):
    """Append or read against the log transport failed."""


class SyncError(TransportError):
    """A registry could not read its topic during sync()."""

    def __init__(self, topic_id: str, message: str):
        super().__init__(f"Failed to sync topic {topic_id}: {message}")
        self.topic_id = topic_id


class NotFoundError(HashLinksError):
    """No registration exists for a required topic."""


class ReferenceResolutionError(HashLinksError):
    """A single dependency is missing or unreachable."""

    def __init__(self, reference: str, message: str):
        super().__init__(message)
        self.reference = reference


class IntegrityError(ReferenceResolutionError):
    """Fetched bytes do not hash to the expected digest."""

    def __init__(self, reference: str, expected: str, computed: str):
        super().__init__(
            reference,
            f"Hash mismatch for {reference}: expected {expected}, computed {computed}",
        )
        self.expected = expected
        self.computed = computed


class CompositionError(HashLinksError):
    """Raised only on request, from CompositionResult.raise_for_errors()."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors
