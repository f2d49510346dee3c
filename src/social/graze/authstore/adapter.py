"""
SQLAlchemy storage adapter for the authentication library.

The adapter maps the library's user, key and session storage calls onto
SQLAlchemy Core statements against three configurable tables. It is built once
with an `async_sessionmaker` owned by the caller and opens one `AsyncSession`
per call. Nothing is cached between calls; the database is the only source of
truth.

Composite operations run inside a single `session.begin()` block so a failure
at any step rolls the whole operation back:

- `set_user` inserts the user and, when given, its first key
- `get_user_and_session` reads a session and the user it references

Insert conflicts are translated into the library's error codes with
`constraint_violation`. Other database errors reach the caller unchanged.
"""

import logging
from time import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from sqlalchemy import MetaData, Table, delete, insert, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from ulid import ULID

from social.graze.authstore.config import TableNames
from social.graze.authstore.errors import (
    AdapterError,
    ConstraintViolation,
    ErrorCode,
    SessionTableNotConfigured,
    constraint_violation,
)
from social.graze.authstore.metrics import MetricsClient, NoOpMetricsClient
from social.graze.authstore.model.schema import (
    KeySchema,
    SessionSchema,
    UserAndSession,
    UserSchema,
)
from social.graze.authstore.model.tables import (
    KEY_ID_COLUMN,
    KEY_USER_ID_COLUMN,
    SESSION_ID_COLUMN,
    SESSION_USER_ID_COLUMN,
    USER_ID_COLUMN,
    AuthTables,
    define_tables,
)

logger = logging.getLogger(__name__)

ErrorFactory = Callable[[str], Exception]

EMBEDDED_KEY_FIELD = "key"


class SQLAlchemyAdapter:
    """
    Storage adapter over a user, a key and an optional session table.

    Args:
        database_session_maker: Session factory bound to the caller's engine
        tables: Table names, or tables already built with `define_tables`
        error_factory: Constructor for classified errors, called with the code string
        metrics_client: Metrics sink, defaults to a no-op client
        isolation_level: Isolation level for `get_user_and_session`, backend default when None
    """

    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        tables: Union[TableNames, AuthTables],
        *,
        error_factory: ErrorFactory = AdapterError,
        metrics_client: Optional[MetricsClient] = None,
        isolation_level: Optional[str] = None,
    ) -> None:
        if isinstance(tables, TableNames):
            tables = define_tables(MetaData(), tables)

        self._database_session_maker = database_session_maker
        self._tables = tables
        self._error_factory = error_factory
        self._metrics = metrics_client if metrics_client is not None else NoOpMetricsClient()
        self._isolation_level = isolation_level

    @property
    def tables(self) -> AuthTables:
        return self._tables

    def _session_table(self, operation: str) -> Table:
        if self._tables.session is None:
            raise SessionTableNotConfigured(operation)
        return self._tables.session

    def _error(self, code: ErrorCode) -> Exception:
        return self._error_factory(code.value)

    def _classify(
        self,
        error: DBAPIError,
        operation: str,
        on_unique: Optional[ErrorCode],
        on_foreign_key: Optional[ErrorCode],
    ) -> Optional[ErrorCode]:
        violation = constraint_violation(error)
        if violation is ConstraintViolation.UNIQUE:
            code = on_unique
        elif violation is ConstraintViolation.FOREIGN_KEY:
            code = on_foreign_key
        else:
            code = None

        if code is not None:
            logger.debug("%s: %s classified as %s", operation, violation, code.value)
            self._metrics.increment(
                "authstore.adapter.conflict",
                1,
                tag_dict={"operation": operation, "code": code.value},
            )
        return code

    async def _fetch_one(self, table: Table, column: str, value: str) -> Optional[Dict[str, Any]]:
        async with self._database_session_maker() as database_session:
            result = await database_session.execute(
                select(table).where(table.c[column] == value)
            )
            row = result.mappings().first()
            return dict(row) if row is not None else None

    async def _fetch_all(self, table: Table, column: str, value: str) -> List[Dict[str, Any]]:
        async with self._database_session_maker() as database_session:
            result = await database_session.execute(
                select(table).where(table.c[column] == value)
            )
            return [dict(row) for row in result.mappings().all()]

    async def _insert(
        self,
        table: Table,
        values: Mapping[str, Any],
        operation: str,
        on_unique: Optional[ErrorCode],
        on_foreign_key: Optional[ErrorCode],
    ) -> None:
        try:
            async with self._database_session_maker() as database_session:
                async with database_session.begin():
                    await database_session.execute(insert(table).values(**values))
        except DBAPIError as e:
            code = self._classify(e, operation, on_unique, on_foreign_key)
            if code is None:
                raise
            raise self._error(code) from e

    async def _update(
        self, table: Table, column: str, value: str, partial: Mapping[str, Any]
    ) -> None:
        if len(partial) == 0:
            return

        async with self._database_session_maker() as database_session:
            async with database_session.begin():
                await database_session.execute(
                    update(table).where(table.c[column] == value).values(**partial)
                )

    async def _delete(self, table: Table, column: str, value: str) -> None:
        async with self._database_session_maker() as database_session:
            async with database_session.begin():
                await database_session.execute(
                    delete(table).where(table.c[column] == value)
                )

    # Users

    async def get_user(self, user_id: str) -> Optional[UserSchema]:
        return await self._fetch_one(self._tables.user, USER_ID_COLUMN, user_id)

    async def set_user(
        self, user: Mapping[str, Any], key: Optional[KeySchema] = None
    ) -> str:
        """
        Insert a user and, when given, its first key in one transaction.

        The key may also be embedded in the user mapping under "key". A user
        without an "id" gets a generated ULID. If the key insert fails the
        user insert is rolled back with it.

        Returns:
            The id of the inserted user

        Raises:
            AUTH_DUPLICATE_KEY_ID: The user id or key id is already taken
            AUTH_INVALID_USER_ID: The key references a user that does not exist
        """
        user_values = dict(user)
        embedded_key = user_values.pop(EMBEDDED_KEY_FIELD, None)
        if key is None:
            key = embedded_key

        if user_values.get(USER_ID_COLUMN) is None:
            user_values[USER_ID_COLUMN] = str(ULID())
        user_id: str = user_values[USER_ID_COLUMN]

        start_time = time()
        try:
            async with self._database_session_maker() as database_session:
                async with database_session.begin():
                    await database_session.execute(
                        insert(self._tables.user).values(**user_values)
                    )

                    if key is not None:
                        key_values = dict(key)
                        key_values[KEY_USER_ID_COLUMN] = user_id
                        await database_session.execute(
                            insert(self._tables.key).values(**key_values)
                        )
        except DBAPIError as e:
            code = self._classify(
                e,
                "set_user",
                ErrorCode.AUTH_DUPLICATE_KEY_ID,
                ErrorCode.AUTH_INVALID_USER_ID,
            )
            if code is None:
                raise
            raise self._error(code) from e
        finally:
            self._metrics.timer(
                "authstore.adapter.transaction.time",
                time() - start_time,
                tag_dict={"operation": "set_user"},
            )

        return user_id

    async def update_user(self, user_id: str, partial_user: Mapping[str, Any]) -> None:
        await self._update(self._tables.user, USER_ID_COLUMN, user_id, partial_user)

    async def delete_user(self, user_id: str) -> None:
        await self._delete(self._tables.user, USER_ID_COLUMN, user_id)

    # Keys

    async def get_key(self, key_id: str) -> Optional[Dict[str, Any]]:
        return await self._fetch_one(self._tables.key, KEY_ID_COLUMN, key_id)

    async def get_keys_by_user_id(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._fetch_all(self._tables.key, KEY_USER_ID_COLUMN, user_id)

    async def set_key(self, key: KeySchema) -> None:
        await self._insert(
            self._tables.key,
            key,
            "set_key",
            ErrorCode.AUTH_DUPLICATE_KEY_ID,
            ErrorCode.AUTH_INVALID_USER_ID,
        )

    async def update_key(self, key_id: str, partial_key: Mapping[str, Any]) -> None:
        await self._update(self._tables.key, KEY_ID_COLUMN, key_id, partial_key)

    async def delete_key(self, key_id: str) -> None:
        await self._delete(self._tables.key, KEY_ID_COLUMN, key_id)

    async def delete_keys_by_user_id(self, user_id: str) -> None:
        await self._delete(self._tables.key, KEY_USER_ID_COLUMN, user_id)

    # Sessions

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        table = self._session_table("get_session")
        return await self._fetch_one(table, SESSION_ID_COLUMN, session_id)

    async def get_sessions_by_user_id(self, user_id: str) -> List[Dict[str, Any]]:
        table = self._session_table("get_sessions_by_user_id")
        return await self._fetch_all(table, SESSION_USER_ID_COLUMN, user_id)

    async def set_session(self, session: SessionSchema) -> None:
        table = self._session_table("set_session")
        await self._insert(
            table,
            session,
            "set_session",
            ErrorCode.AUTH_DUPLICATE_KEY_ID,
            ErrorCode.AUTH_INVALID_USER_ID,
        )

    async def update_session(
        self, session_id: str, partial_session: Mapping[str, Any]
    ) -> None:
        table = self._session_table("update_session")
        await self._update(table, SESSION_ID_COLUMN, session_id, partial_session)

    async def delete_session(self, session_id: str) -> None:
        table = self._session_table("delete_session")
        await self._delete(table, SESSION_ID_COLUMN, session_id)

    async def delete_sessions_by_user_id(self, user_id: str) -> None:
        table = self._session_table("delete_sessions_by_user_id")
        await self._delete(table, SESSION_USER_ID_COLUMN, user_id)

    async def get_user_and_session(self, session_id: str) -> UserAndSession:
        """
        Read a session and the user it references in one transaction.

        Raises:
            NOT_FOUND: The session does not exist, or its user has been deleted
        """
        session_table = self._session_table("get_user_and_session")
        user_table = self._tables.user

        start_time = time()
        try:
            async with self._database_session_maker() as database_session:
                async with database_session.begin():
                    if self._isolation_level is not None:
                        await database_session.connection(
                            execution_options={"isolation_level": self._isolation_level}
                        )

                    session_result = await database_session.execute(
                        select(session_table).where(
                            session_table.c[SESSION_ID_COLUMN] == session_id
                        )
                    )
                    session_row = session_result.mappings().first()
                    if session_row is None:
                        self._metrics.increment(
                            "authstore.adapter.not_found",
                            1,
                            tag_dict={"entity": "session"},
                        )
                        raise self._error(ErrorCode.NOT_FOUND)

                    user_id = session_row[SESSION_USER_ID_COLUMN]
                    user_result = await database_session.execute(
                        select(user_table).where(user_table.c[USER_ID_COLUMN] == user_id)
                    )
                    user_row = user_result.mappings().first()
                    if user_row is None:
                        logger.warning(
                            "get_user_and_session: session %s references missing user %s",
                            session_id,
                            user_id,
                        )
                        self._metrics.increment(
                            "authstore.adapter.not_found",
                            1,
                            tag_dict={"entity": "user"},
                        )
                        raise self._error(ErrorCode.NOT_FOUND)

                    return UserAndSession(user=dict(user_row), session=dict(session_row))
        finally:
            self._metrics.timer(
                "authstore.adapter.transaction.time",
                time() - start_time,
                tag_dict={"operation": "get_user_and_session"},
            )


def sqlalchemy_adapter(
    database_session_maker: async_sessionmaker[AsyncSession],
    tables: Union[TableNames, AuthTables],
    **kwargs: Any,
) -> Callable[[ErrorFactory], SQLAlchemyAdapter]:
    """
    Build the adapter initializer the authentication library calls.

    Tables are resolved immediately; the returned callable only binds the
    library's error class.

    Example:
        initialize = sqlalchemy_adapter(session_maker, TableNames(user="auth_user", key="auth_key"))
        adapter = initialize(LibraryError)
    """
    if isinstance(tables, TableNames):
        tables = define_tables(MetaData(), tables)

    def initialize(error_factory: ErrorFactory = AdapterError) -> SQLAlchemyAdapter:
        return SQLAlchemyAdapter(
            database_session_maker, tables, error_factory=error_factory, **kwargs
        )

    return initialize
