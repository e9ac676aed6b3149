# -*- coding: utf-8 -*-

"""
Exceptions raised by the bulk job/batch lifecycle.

Every error derives from BulkError so callers can catch the whole family at
once, while the CLI still tells them apart when reporting.
"""


class BulkError(Exception):
    """Base class for all errors raised by Bulk Batch Manager."""


class AuthenticationFailed(BulkError):
    """The credential exchange was rejected or the session is no longer valid."""


class RemoteRejected(BulkError):
    """
    The remote service refused a request (job or batch creation, unknown batch...).

    Args:
        code (str): Exception code reported by the service (e.g. "InvalidJob").
        message (str): Human-readable message reported by the service.
        status_code (int | None): HTTP status code of the response, if any.
    """

    def __init__(self, code, message, status_code=None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.status_code = status_code


class InvalidState(BulkError):
    """An operation was attempted on a batch whose state does not allow it."""


class TransientQueryFailure(BulkError):
    """A remote call failed because of a recoverable condition (network, 5xx, throttling)."""


class PollingInterrupted(BulkError):
    """
    Base class for polling runs stopped before every batch reached a terminal state.

    The partial PollingReport is kept in `report`.
    """

    def __init__(self, message, report):
        super().__init__(message)
        self.report = report


class PollingCancelled(PollingInterrupted):
    """The cancellation signal was set while batches were still pending."""


class PollingTimeout(PollingInterrupted):
    """The overall polling deadline was reached while batches were still pending."""
