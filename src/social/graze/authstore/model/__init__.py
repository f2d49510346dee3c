"""
Table and Row Models

This package describes the three tables the adapter reads and writes and the
shapes of the rows it returns. Table names are supplied by the caller, so the
tables are built as SQLAlchemy Core `Table` objects at adapter construction
time instead of being declared as ORM classes.

Key Modules:
- tables.py: Identifier escaping and `Table` definitions for users, keys and sessions
- schema.py: Typed row shapes and the composite user/session result

The data model follows these relationships:
- User: The identity record, with caller-defined extra columns
- Key: A credential owned by exactly one user (`user_id`), optionally holding a password hash
- Session: A server-side session owned by exactly one user, with active/idle expiry in epoch milliseconds

Deleting a user never cascades to its keys or sessions; callers remove those
explicitly.
"""
