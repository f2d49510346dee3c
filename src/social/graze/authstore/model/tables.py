"""Table definitions for the user, key and session tables.

Table names come from configuration, so the tables are built once per adapter
with `define_tables` and reused for every statement.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import BigInteger, Column, ForeignKey, Index, MetaData, String, Table
from sqlalchemy.sql import quoted_name

from social.graze.authstore.config import TableNames

USER_ID_COLUMN = "id"

KEY_ID_COLUMN = "id"
KEY_USER_ID_COLUMN = "user_id"
KEY_HASHED_PASSWORD_COLUMN = "hashed_password"

SESSION_ID_COLUMN = "id"
SESSION_USER_ID_COLUMN = "user_id"
SESSION_ACTIVE_EXPIRES_COLUMN = "active_expires"
SESSION_IDLE_EXPIRES_COLUMN = "idle_expires"


def escape_name(name: str) -> quoted_name:
    """Return `name` as an identifier the dialect always quotes."""
    return quoted_name(name, quote=True)


@dataclass(frozen=True)
class AuthTables:
    """
    The tables an adapter operates on.

    Attributes:
        user: The user table
        key: The key table, with a foreign key to `user.id`
        session: The session table, or None when sessions are disabled
    """

    user: Table
    key: Table
    session: Optional[Table] = None


def define_tables(
    metadata: MetaData,
    names: TableNames,
    *,
    user_columns: Iterable[Column] = (),
    key_columns: Iterable[Column] = (),
    session_columns: Iterable[Column] = (),
) -> AuthTables:
    """
    Build the user, key and session tables on `metadata`.

    The extra column arguments carry caller-defined attributes (for example a
    username on the user table). No DDL is issued here.

    Args:
        metadata: MetaData the tables are attached to
        names: Configured table names
        user_columns: Extra columns for the user table
        key_columns: Extra columns for the key table
        session_columns: Extra columns for the session table

    Returns:
        AuthTables bundling the three tables
    """
    user_table_name = escape_name(names.user)
    key_table_name = escape_name(names.key)

    user = Table(
        user_table_name,
        metadata,
        Column(USER_ID_COLUMN, String(512), primary_key=True),
        *user_columns,
    )

    key = Table(
        key_table_name,
        metadata,
        Column(KEY_ID_COLUMN, String(512), primary_key=True),
        Column(
            KEY_USER_ID_COLUMN,
            String(512),
            ForeignKey(user.c[USER_ID_COLUMN]),
            nullable=False,
        ),
        Column(KEY_HASHED_PASSWORD_COLUMN, String(512), nullable=True),
        *key_columns,
        Index(escape_name(f"idx_{names.key}_user_id"), KEY_USER_ID_COLUMN),
    )

    session = None
    if names.session is not None:
        session = Table(
            escape_name(names.session),
            metadata,
            Column(SESSION_ID_COLUMN, String(512), primary_key=True),
            Column(
                SESSION_USER_ID_COLUMN,
                String(512),
                ForeignKey(user.c[USER_ID_COLUMN]),
                nullable=False,
            ),
            Column(SESSION_ACTIVE_EXPIRES_COLUMN, BigInteger, nullable=False),
            Column(SESSION_IDLE_EXPIRES_COLUMN, BigInteger, nullable=False),
            *session_columns,
            Index(escape_name(f"idx_{names.session}_user_id"), SESSION_USER_ID_COLUMN),
        )

    return AuthTables(user=user, key=key, session=session)
