"""Errors raised by the bookmark store, the change feed and input validation.

Everything here derives from :class:`SyncError`. The live collection turns
each of them into a dismissible message; none of them is meant to stop the
process.
"""


class SyncError(Exception):
    """Base class for recoverable synchronization errors."""


class TransientFetchError(SyncError):
    """A snapshot or mutation request failed (network or backend unavailable)."""


class RejectedError(SyncError):
    """The store refused a request, e.g. deleting a bookmark the user does not own."""


class ValidationError(SyncError):
    """Local input was malformed; raised before any request is sent."""


class SubscriptionError(SyncError):
    """The change feed could not be opened or was dropped."""
