"""
Error types shared across the live tracking system.
"""

from typing import Optional


class TransitLiveError(Exception):
    """Base class for all transit_live errors"""


class ReferenceLoadFailure(TransitLiveError):
    """A required static table could not be loaded. Fatal at startup."""

    def __init__(self, file_name: str, path: str, reason: str = ""):
        self.file_name = file_name
        self.path = path
        self.reason = reason
        message = f"{file_name} could not be loaded from {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class FeedFetchError(TransitLiveError):
    """The realtime feed could not be fetched or decoded"""

    def __init__(self, message: str, cause: Optional[BaseException] = None,
                 is_transient: bool = True, status: Optional[int] = None):
        super().__init__(message)
        self.cause = cause
        self.is_transient = is_transient
        self.status = status


class EnrichmentSkip(TransitLiveError):
    """A single feed entity could not be turned into a vehicle record"""

    def __init__(self, entity_id: str, reason: str):
        super().__init__(f"Skipping entity {entity_id!r}: {reason}")
        self.entity_id = entity_id
        self.reason = reason
