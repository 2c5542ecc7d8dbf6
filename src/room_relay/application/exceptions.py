from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ValidationError(AppError):
    pass


class CodecError(AppError):
    """A binary field arrived in a shape the transport codec does not know."""


class DecryptionError(AppError):
    """Authentication or parsing of an envelope failed."""


class KeyDerivationError(AppError):
    pass


class PersistenceError(AppError):
    """The message store is unavailable or rejected a write."""


class IdentityConflictError(PersistenceError):
    """A user id collided with a row the upsert could not reconcile."""
