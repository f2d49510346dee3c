"""
Error vocabulary of the adapter and classification of database errors.

The authentication library understands three conditions: a duplicate key (or
user, or session) id, a key or session pointing at a user that does not exist,
and a missing session/user pair. Every other database failure is passed
through unchanged.

Insert conflicts are recognised from structured driver signals first:

- SQLSTATE 23505 (unique violation) and 23503 (foreign key violation), read
  from `sqlstate` or `pgcode` on asyncpg, psycopg and psycopg2 errors
- MySQL error numbers 1062/1586 (duplicate entry) and 1216/1452 (foreign key)
- SQLite extended result names on `sqlite_errorname`

Message text is consulted only for integrity errors that carry none of the
above.
"""

import enum
import logging
from typing import Iterator, Optional, Tuple, Union

from sqlalchemy.exc import DBAPIError, IntegrityError

logger = logging.getLogger(__name__)


class ErrorCode(str, enum.Enum):
    AUTH_DUPLICATE_KEY_ID = "AUTH_DUPLICATE_KEY_ID"
    AUTH_INVALID_USER_ID = "AUTH_INVALID_USER_ID"
    NOT_FOUND = "NOT_FOUND"


class AdapterError(Exception):
    """
    Classified adapter failure.

    This is the default error constructor of the adapter. Authentication
    libraries that bring their own error class pass it to the adapter instead;
    either way the constructor receives the code string.
    """

    def __init__(self, code: Union[ErrorCode, str]) -> None:
        self.code = ErrorCode(code)
        super().__init__(self.code.value)

    @staticmethod
    def duplicate_key_id() -> "AdapterError":
        """A key, user or session with the same id already exists."""
        return AdapterError(ErrorCode.AUTH_DUPLICATE_KEY_ID)

    @staticmethod
    def invalid_user_id() -> "AdapterError":
        """The referenced user does not exist."""
        return AdapterError(ErrorCode.AUTH_INVALID_USER_ID)

    @staticmethod
    def not_found() -> "AdapterError":
        """The session, or the user it references, does not exist."""
        return AdapterError(ErrorCode.NOT_FOUND)


class SessionTableNotConfigured(Exception):
    """Raised by session operations on an adapter built without a session table."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} requires a session table to be configured")


class ConstraintViolation(enum.Enum):
    UNIQUE = "unique"
    FOREIGN_KEY = "foreign_key"


UNIQUE_VIOLATION_SQLSTATES = frozenset({"23505"})
FOREIGN_KEY_VIOLATION_SQLSTATES = frozenset({"23503"})

MYSQL_DUPLICATE_ENTRY_ERRNOS = frozenset({1062, 1586})
MYSQL_FOREIGN_KEY_ERRNOS = frozenset({1216, 1452})

SQLITE_UNIQUE_ERRORNAMES = frozenset(
    {"SQLITE_CONSTRAINT_PRIMARYKEY", "SQLITE_CONSTRAINT_UNIQUE"}
)
SQLITE_FOREIGN_KEY_ERRORNAMES = frozenset({"SQLITE_CONSTRAINT_FOREIGNKEY"})

UNIQUE_VIOLATION_MARKERS = ("duplicate", "unique constraint")
FOREIGN_KEY_VIOLATION_MARKERS = ("foreign key", "invalid")


def _driver_errors(error: DBAPIError) -> Iterator[BaseException]:
    # Async drivers are wrapped by SQLAlchemy's adaption layer, the native
    # exception is reachable through __cause__.
    seen = set()
    current: Optional[BaseException] = error.orig
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def _structured_violation(
    driver_error: BaseException,
) -> Tuple[bool, Optional[ConstraintViolation]]:
    """Return whether the error carries a structured code, and the violation it names."""
    for attribute in ("sqlstate", "pgcode"):
        sqlstate = getattr(driver_error, attribute, None)
        if isinstance(sqlstate, str) and len(sqlstate) > 0:
            if sqlstate in UNIQUE_VIOLATION_SQLSTATES:
                return True, ConstraintViolation.UNIQUE
            if sqlstate in FOREIGN_KEY_VIOLATION_SQLSTATES:
                return True, ConstraintViolation.FOREIGN_KEY
            return True, None

    errorname = getattr(driver_error, "sqlite_errorname", None)
    if isinstance(errorname, str):
        if errorname in SQLITE_UNIQUE_ERRORNAMES:
            return True, ConstraintViolation.UNIQUE
        if errorname in SQLITE_FOREIGN_KEY_ERRORNAMES:
            return True, ConstraintViolation.FOREIGN_KEY
        return True, None

    args = getattr(driver_error, "args", ())
    if len(args) > 0 and isinstance(args[0], int):
        if args[0] in MYSQL_DUPLICATE_ENTRY_ERRNOS:
            return True, ConstraintViolation.UNIQUE
        if args[0] in MYSQL_FOREIGN_KEY_ERRNOS:
            return True, ConstraintViolation.FOREIGN_KEY
        return True, None

    return False, None


def _message_violation(error: DBAPIError) -> Optional[ConstraintViolation]:
    message = str(error.orig).lower()
    if any(marker in message for marker in UNIQUE_VIOLATION_MARKERS):
        return ConstraintViolation.UNIQUE
    if any(marker in message for marker in FOREIGN_KEY_VIOLATION_MARKERS):
        return ConstraintViolation.FOREIGN_KEY
    return None


def constraint_violation(error: BaseException) -> Optional[ConstraintViolation]:
    """
    Determine which constraint, if any, an insert failed on.

    Message text is only inspected for integrity errors whose driver error
    carries no structured code at all.

    Args:
        error: The exception raised while executing the statement

    Returns:
        The violated constraint kind, or None when the error is not a
        recognised unique or foreign key violation
    """
    if not isinstance(error, DBAPIError):
        return None

    structured = False
    for driver_error in _driver_errors(error):
        has_code, violation = _structured_violation(driver_error)
        if violation is not None:
            return violation
        structured = structured or has_code

    if structured or not isinstance(error, IntegrityError):
        return None

    violation = _message_violation(error)
    if violation is not None:
        logger.debug("constraint_violation: classified %s from message text", violation)
    return violation
