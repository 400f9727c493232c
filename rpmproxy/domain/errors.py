"""
Exception hierarchy for the RPM repository proxy.

Every error raised by the metadata pipeline derives from RpmProxyError so the
HTTP layer and the scheduler can catch a single base class. The `retryable`
flag tells the periodic caller whether re-running the same operation on the
next cycle can succeed.
"""

from __future__ import annotations


class RpmProxyError(Exception):
    """Base exception for all rpmproxy errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class StorageUnavailable(RpmProxyError):
    """The key-value state store could not be read or written."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class ProviderFetchFailed(RpmProxyError):
    """An upstream provider API was unreachable or answered with an error."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class FetchFailed(RpmProxyError):
    """The artifact origin failed, timed out, or lacks range support."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class ParseFailed(RpmProxyError):
    """The header region did not contain the expected RPM structures."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class ChecksumIncomplete(RpmProxyError):
    """The full-content stream ended before the checksum could be finalized."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class NotFound(RpmProxyError):
    """A requested provider, release or document does not exist."""


class ConfigError(RpmProxyError):
    """Invalid or missing configuration."""
