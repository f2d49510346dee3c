"""
Unit tests for constraint violation classification in social.graze.authstore.errors

Driver errors are simulated with small exception classes carrying the same
attributes the real drivers expose.
"""

import sqlite3

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from social.graze.authstore.errors import (
    AdapterError,
    ConstraintViolation,
    ErrorCode,
    constraint_violation,
)


class FakeAsyncpgError(Exception):
    def __init__(self, message: str, sqlstate: str) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


class FakePsycopg2Error(Exception):
    def __init__(self, message: str, pgcode: str) -> None:
        super().__init__(message)
        self.pgcode = pgcode


class FakeSqliteError(Exception):
    def __init__(self, message: str, sqlite_errorname: str) -> None:
        super().__init__(message)
        self.sqlite_errorname = sqlite_errorname


def integrity_error(orig: BaseException) -> IntegrityError:
    return IntegrityError("INSERT INTO auth_key ...", {}, orig)


class TestStructuredCodes:
    @pytest.mark.parametrize(
        "orig, expected",
        [
            (FakeAsyncpgError("boom", "23505"), ConstraintViolation.UNIQUE),
            (FakeAsyncpgError("boom", "23503"), ConstraintViolation.FOREIGN_KEY),
            (FakePsycopg2Error("boom", "23505"), ConstraintViolation.UNIQUE),
            (FakePsycopg2Error("boom", "23503"), ConstraintViolation.FOREIGN_KEY),
            (
                FakeSqliteError("boom", "SQLITE_CONSTRAINT_PRIMARYKEY"),
                ConstraintViolation.UNIQUE,
            ),
            (
                FakeSqliteError("boom", "SQLITE_CONSTRAINT_UNIQUE"),
                ConstraintViolation.UNIQUE,
            ),
            (
                FakeSqliteError("boom", "SQLITE_CONSTRAINT_FOREIGNKEY"),
                ConstraintViolation.FOREIGN_KEY,
            ),
            (
                Exception(1062, "Duplicate entry 'k1' for key 'PRIMARY'"),
                ConstraintViolation.UNIQUE,
            ),
            (
                Exception(1452, "Cannot add or update a child row"),
                ConstraintViolation.FOREIGN_KEY,
            ),
        ],
    )
    def test_driver_codes(self, orig, expected):
        assert constraint_violation(integrity_error(orig)) is expected

    def test_code_on_wrapped_driver_error(self):
        """The native error behind an adaption wrapper is consulted too."""
        native = FakeAsyncpgError("boom", "23503")
        wrapper = Exception("adapted error")
        wrapper.__cause__ = native

        assert constraint_violation(integrity_error(wrapper)) is ConstraintViolation.FOREIGN_KEY

    def test_structured_code_wins_over_text(self):
        orig = FakeAsyncpgError("duplicate value in column", "23502")
        assert constraint_violation(integrity_error(orig)) is None

    def test_other_sqlite_constraint(self):
        orig = FakeSqliteError("NOT NULL constraint failed", "SQLITE_CONSTRAINT_NOTNULL")
        assert constraint_violation(integrity_error(orig)) is None

    def test_structured_code_on_non_integrity_error(self):
        error = DBAPIError("INSERT ...", {}, FakeAsyncpgError("boom", "23505"))
        assert constraint_violation(error) is ConstraintViolation.UNIQUE


class TestMessageFallback:
    @pytest.mark.parametrize(
        "message, expected",
        [
            (
                'duplicate key value violates unique constraint "auth_key_pkey"',
                ConstraintViolation.UNIQUE,
            ),
            ("UNIQUE constraint failed: auth_key.id", ConstraintViolation.UNIQUE),
            ("FOREIGN KEY constraint failed", ConstraintViolation.FOREIGN_KEY),
            ("invalid user reference", ConstraintViolation.FOREIGN_KEY),
            ("NOT NULL constraint failed: auth_key.user_id", None),
        ],
    )
    def test_integrity_error_text(self, message, expected):
        assert constraint_violation(integrity_error(Exception(message))) is expected

    def test_sqlite3_error_without_errorname(self):
        orig = sqlite3.IntegrityError("UNIQUE constraint failed: auth_user.id")
        if hasattr(orig, "sqlite_errorname"):
            pytest.skip("sqlite3 exposes structured error names on this interpreter")

        assert constraint_violation(integrity_error(orig)) is ConstraintViolation.UNIQUE

    def test_text_ignored_for_other_dbapi_errors(self):
        error = OperationalError("INSERT ...", {}, Exception("duplicate connection"))
        assert constraint_violation(error) is None

    def test_non_database_errors(self):
        assert constraint_violation(ValueError("duplicate")) is None


class TestAdapterError:
    def test_code_from_string(self):
        error = AdapterError("AUTH_DUPLICATE_KEY_ID")
        assert error.code is ErrorCode.AUTH_DUPLICATE_KEY_ID

    def test_unknown_code(self):
        with pytest.raises(ValueError):
            AdapterError("AUTH_SOMETHING_ELSE")

    def test_error_code_is_string(self):
        assert ErrorCode.NOT_FOUND == "NOT_FOUND"
