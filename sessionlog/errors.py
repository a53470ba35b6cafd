"""
errors.py - Error taxonomy for session tracking and log retrieval.

CredentialUnavailable, StoreUnavailable and MalformedDurableState are recovered
where they occur (logged, never shown to the operator). Only query-time
failures reach the reviewer, as a retryable "could not load logs" state.
"""


class SessionLogError(Exception):
    """Base class for all sessionlog errors."""


class CredentialUnavailable(SessionLogError):
    """No delivery credential could be resolved for the current identity."""


class StoreUnavailable(SessionLogError):
    """The audit log store could not be reached or rejected the operation."""


class MalformedDurableState(SessionLogError):
    """The durable session slot holds content that is not a valid session record."""


class InvalidCursor(SessionLogError, ValueError):
    """An opaque log cursor could not be decoded."""
