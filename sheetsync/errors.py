"""Typed failures for token, read and write calls against the Sheets API."""

from __future__ import annotations

from typing import Iterable, Optional


class SyncError(Exception):
    """Root of every failure raised by sheetsync."""

    def __init__(self, message: str, *, operation: str = "", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.status = status

    @property
    def kind(self) -> str:
        return type(self).__name__

    def as_log(self) -> dict:
        out = {"err": self.kind, "reason": self.message}
        if self.operation:
            out["op"] = self.operation
        if self.status is not None:
            out["status"] = self.status
        return out


class ConfigError(SyncError):
    pass


class PreconditionError(SyncError):
    """Invalid caller argument, detected before any network call."""


class ArtifactError(SyncError):
    """The filtered result could not be written locally."""


class JournalError(SyncError):
    """A mutation outcome could not be recorded in the journal."""


# ---------- Auth ----------
class AuthError(SyncError):
    pass


class BadCredential(AuthError):
    pass


class SignFailure(AuthError):
    pass


class TransportFailure(AuthError):
    pass


class TokenMissing(AuthError):
    pass


# ---------- Read ----------
class ReadError(SyncError):
    pass


class ReadTransportFailure(ReadError):
    pass


class MalformedResponse(ReadError):
    pass


# ---------- Write ----------
class WriteError(SyncError):
    pass


class WriteTransportFailure(WriteError):
    pass


class RejectedByService(WriteError):
    pass


class Unauthorized(WriteError):
    """Token expired or revoked; acquire a new one instead of retrying the call."""


class InvalidIndex(WriteError, PreconditionError):
    pass


__all__: Iterable[str] = (
    "SyncError",
    "ConfigError",
    "PreconditionError",
    "ArtifactError",
    "JournalError",
    "AuthError",
    "BadCredential",
    "SignFailure",
    "TransportFailure",
    "TokenMissing",
    "ReadError",
    "ReadTransportFailure",
    "MalformedResponse",
    "WriteError",
    "WriteTransportFailure",
    "RejectedByService",
    "Unauthorized",
    "InvalidIndex",
)
