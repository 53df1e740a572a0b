"""Error taxonomy for the invite service."""
from __future__ import annotations

from typing import Optional


class InviteServiceError(Exception):
    """Base exception for all invite service errors."""


class ConfigurationError(InviteServiceError):
    """Raised when required credentials or the channel id are missing."""


class CacheStoreError(InviteServiceError):
    """Raised by cache backends; never surfaced to HTTP callers."""


class UpstreamError(InviteServiceError):
    """Raised when the Discord API refuses or fails to create an invite."""

    def __init__(self, status: int, details: Optional[str] = None):
        self.status = status
        self.details = details
        super().__init__(f"Discord API error (status={status}): {details or '-'}")


class MalformedUpstreamResponse(UpstreamError):
    """Raised when a success response carries no usable invite code."""

    def __init__(self, details: Optional[str] = None):
        super().__init__(status=500, details=details)
