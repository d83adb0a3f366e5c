"""
errors.py

Exception types raised across the release tracker.
"""
from typing import Optional


class ReleaseTrackerError(Exception):
    """Base class for release tracker errors."""


class ConfigurationError(ReleaseTrackerError):
    """Raised at startup when required settings are missing or invalid."""

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = missing or []


class TMDBError(ReleaseTrackerError):
    """A catalog request failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class MailerError(ReleaseTrackerError):
    """The mail transport rejected a message or could not be reached."""

    def __init__(self, message: str, recipient: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.recipient = recipient
        self.status_code = status_code


class CacheBuildError(ReleaseTrackerError):
    """A read-through cache build failed; no cache entry was written."""

    def __init__(self, cache_key: str, reason: str):
        super().__init__(f"Failed to build cache '{cache_key}': {reason}")
        self.cache_key = cache_key
        self.reason = reason
