from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from room_relay.application.exceptions import IdentityConflictError, PersistenceError


@contextmanager
def translate_errors(*, identity: bool = False) -> Iterator[None]:
    """Re-raise SQLAlchemy failures as application persistence errors."""
    try:
        yield
    except IntegrityError as exc:
        if identity:
            raise IdentityConflictError(str(exc.orig or exc)) from exc
        raise PersistenceError(str(exc.orig or exc)) from exc
    except SQLAlchemyError as exc:
        raise PersistenceError(str(exc)) from exc
