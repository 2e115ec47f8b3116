"""Exception hierarchy shared by the sync engine."""

from __future__ import annotations


class MarginaliaError(Exception):
    """Base class for all marginalia errors."""


class ParseError(MarginaliaError):
    """An untyped payload (URL, tab message) could not be interpreted."""


class ValidationError(MarginaliaError):
    """A note collection violates the count or size limits."""


class RateLimitError(MarginaliaError):
    """A write to the same document arrived inside the throttle window."""


class RemoteUnavailableError(MarginaliaError):
    """The remote document store could not be reached or refused the call."""
