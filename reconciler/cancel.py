"""Cancellation tokens for superseded lookups."""
from __future__ import annotations


class LookupCancelled(Exception):
    """Raised when work tied to a cancelled token is abandoned."""


class CancelToken:
    """A flag shared between the caller and an in-flight lookup.

    Cancelling does not interrupt network I/O already in progress; the
    lookup checks the token around each call and its result is discarded.
    """

    __slots__ = ("_cancelled", "reason")

    def __init__(self) -> None:
        self._cancelled = False
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "superseded") -> None:
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise LookupCancelled(self.reason or "cancelled")
