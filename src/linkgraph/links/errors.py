from __future__ import annotations


class LinkGraphError(Exception):
    """Base class for link graph failures."""


class LinkValidationError(LinkGraphError, ValueError):
    """Malformed input. Raised before any store mutation."""


class StoreError(LinkGraphError):
    """The link store failed to execute a query."""


class StoreUnavailableError(StoreError):
    """The link store could not be reached."""
