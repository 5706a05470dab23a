"""Exceptions raised by the task propagation core."""

from __future__ import annotations


class SlatedError(Exception):
    """Base class for all errors raised by this package."""


class RecurrenceConfigError(SlatedError, ValueError):
    """A schedule phrase or rule cannot be used for recurrence."""


class UnresolvableOriginError(SlatedError):
    """A derived task carries no link back to the document it came from."""


class DocumentStoreError(SlatedError):
    """The document store failed to read, write or create a document."""


class DocumentChangedError(SlatedError):
    """A task line could no longer be found in its document."""
