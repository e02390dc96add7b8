"""
Storage sessions with explicit transaction boundaries.

Two flavours are handed out by a storage backend:

* auto-commit sessions, where every operation commits on its own and
  ``begin``/``commit``/``rollback`` are no-ops;
* transactional sessions, where the caller pairs ``begin`` with exactly one
  ``commit`` or ``rollback``. Nested transactions are not supported.

Both are context managers; leaving the block rolls back whatever was not
committed and releases the connection.
"""

from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from feed_mailer.errors import FailedPreconditionError, InternalError, UnimplementedError


class StorageSession(ABC):
    """Session-scoped access to a storage backend."""

    @abstractmethod
    def begin(self) -> "StorageSession":
        """Start a transaction.

        Either ``rollback`` or ``commit`` MUST be called to pair with ``begin``.
        """
        ...

    @abstractmethod
    def commit(self) -> None:
        """Commit the changes made in the transaction."""
        ...

    @abstractmethod
    def rollback(self) -> None:
        """Abort the changes made in the transaction."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the session, rolling back anything uncommitted."""
        ...

    def __enter__(self) -> "StorageSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class SQLSession(StorageSession):
    """StorageSession backed by a SQLAlchemy ORM session."""

    def __init__(self, session_factory: sessionmaker, autocommit: bool = False):
        """Initialize the session.

        Args:
            session_factory: Factory for the underlying ORM sessions
            autocommit: Commit after every operation instead of on ``commit``
        """
        self._session_factory = session_factory
        self.autocommit = autocommit
        self._session: Optional[Session] = None
        self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        """Whether a transaction was begun and not yet finished."""
        return self._in_transaction

    @property
    def orm(self) -> Session:
        """Underlying ORM session.

        Raises:
            FailedPreconditionError: If a transactional session was not begun
        """
        if not self.autocommit and not self._in_transaction:
            raise FailedPreconditionError("transactional session used without begin()")

        if self._session is None:
            self._session = self._session_factory()
        return self._session

    def begin(self) -> "SQLSession":
        if self.autocommit:
            return self
        if self._in_transaction:
            raise UnimplementedError("unsupported nested transaction")

        # The ORM session begins lazily on the first statement
        self._in_transaction = True
        return self

    def commit(self) -> None:
        if self.autocommit:
            return
        if not self._in_transaction:
            raise FailedPreconditionError("commit without an active transaction")

        self._in_transaction = False
        if self._session is None:
            return

        try:
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            raise InternalError("commit transaction failed", cause=e) from e

    def rollback(self) -> None:
        if self.autocommit or not self._in_transaction:
            return

        self._in_transaction = False
        if self._session is not None:
            self._session.rollback()

    def end_statement(self) -> None:
        """Flush pending statements; auto-commit sessions commit them as well."""
        session = self.orm
        session.flush()
        if self.autocommit:
            session.commit()

    def abort_statement(self) -> None:
        """Discard a failed statement of an auto-commit session.

        Transactional sessions are left to the caller's ``rollback``.
        """
        if self.autocommit and self._session is not None:
            self._session.rollback()

    def close(self) -> None:
        self.rollback()
        if self._session is not None:
            self._session.close()
            self._session = None
