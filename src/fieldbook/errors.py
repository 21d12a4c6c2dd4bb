"""Error taxonomy for the reconciliation layer.

Every error below is recovered close to where it happens: fetch failures are
reported through merge outcomes, cache failures fall back to the remote URL.
Nothing here is meant to reach a user except a failed first page.
"""

from __future__ import annotations


class FieldbookError(Exception):
    """Base exception for Fieldbook."""


class NetworkError(FieldbookError):
    """A fetch or download failed; retrying may succeed.

    Attributes:
        status_code: HTTP status of the failed response, when one was received.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PayloadError(NetworkError):
    """The server answered but the page payload could not be used."""


class ParseError(FieldbookError):
    """A URL did not yield a cache key; it is rendered remotely instead."""


class StorageError(FieldbookError):
    """Writing to the local cache failed."""


class ConcurrencyGuardViolation(FieldbookError):
    """A merge was requested while another was in flight.

    Only used as a marker; such requests are dropped, never raised.
    """


__all__ = [
    "FieldbookError",
    "NetworkError",
    "PayloadError",
    "ParseError",
    "StorageError",
    "ConcurrencyGuardViolation",
]
