"""
authstore - SQLAlchemy storage adapter for authentication

This package stores the users, keys and sessions of an authentication library
in a relational database through SQLAlchemy's async Core API. Table names are
configurable and the session table is optional.

Key Components:
- adapter: The storage adapter and the initializer handed to the authentication library
- errors: Error codes and classification of database constraint violations
- model: Table definitions and row shapes
- config: Table-name configuration and environment settings
- metrics: Metrics abstraction used by the adapter
- cli: Maintenance command line

Architecture Overview:
1. Construction:
   - Table names are escaped and the tables are built once
   - The caller's session maker is injected, the adapter never owns the engine

2. Operations:
   - Each call opens its own session and runs one statement or one transaction
   - Reading a session together with its user happens in a single transaction

3. Errors:
   - Unique and foreign key violations on insert become duplicate-id and invalid-user errors
   - Missing sessions and dangling user references become not-found errors
   - Everything else is propagated unchanged
"""

from social.graze.authstore.adapter import SQLAlchemyAdapter, sqlalchemy_adapter
from social.graze.authstore.config import TableNames
from social.graze.authstore.errors import (
    AdapterError,
    ErrorCode,
    SessionTableNotConfigured,
)
from social.graze.authstore.model.schema import UserAndSession
from social.graze.authstore.model.tables import AuthTables, define_tables

__all__ = [
    "AdapterError",
    "AuthTables",
    "ErrorCode",
    "SQLAlchemyAdapter",
    "SessionTableNotConfigured",
    "TableNames",
    "UserAndSession",
    "define_tables",
    "sqlalchemy_adapter",
]
