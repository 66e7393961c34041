"""Exception hierarchy surfaced to the request boundary."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for failures reported to callers as error results."""


class MissingSheetError(LedgerError):
    """Raised when a sheet a read or write needs does not exist."""


class AuthenticationError(LedgerError):
    """Raised when a password check fails; no session is issued."""


class SessionError(LedgerError):
    """Raised when a session token is unknown, expired, or lacks the role.

    The message never tells an unknown token from an expired one.
    """


class InvalidRequestError(LedgerError):
    """Raised when a write request body is missing or malformed."""
