"""
Exception taxonomy for the reconciler.

Per-match problems (a single provider request failing, a lost write race) are
handled where they happen; the types below mark what may cross a job boundary.
"""
from __future__ import annotations


class ReconcilerError(Exception):
    """Base class for reconciler errors."""


class ProviderError(ReconcilerError):
    """A single provider request failed (timeout, 5xx, error body)."""

    def __init__(self, message: str, *, endpoint: str = "", status: int | None = None) -> None:
        self.endpoint = endpoint
        self.status = status
        super().__init__(message)


class ProviderUnavailableError(ProviderError):
    """The provider cannot be reached at all; the current job run must abort."""


class PayloadShapeError(ReconcilerError):
    """A provider record does not match the documented positional layout."""


class PersistenceError(ReconcilerError):
    """The match store could not be reached."""


class MatchNotFoundError(ReconcilerError):
    """No stored match with the given external id."""

    def __init__(self, match_id: str) -> None:
        self.match_id = match_id
        super().__init__(f"Match {match_id} not found")
