"""Row shapes exchanged with the authentication library."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from typing_extensions import TypedDict

UserSchema = Dict[str, Any]
"""A user row: `id` plus caller-defined attributes."""


class KeySchema(TypedDict, total=False):
    id: str
    user_id: str
    hashed_password: Optional[str]


class SessionSchema(TypedDict):
    id: str
    user_id: str
    active_expires: int
    idle_expires: int


@dataclass(repr=False, eq=True)
class UserAndSession:
    """
    A session row together with the user row it references.

    Both rows are read inside the same database transaction.
    """

    user: UserSchema
    session: Dict[str, Any]

    def __repr__(self) -> str:
        return (
            f"UserAndSession(user_id={self.user.get('id')!r}, "
            f"session_id={self.session.get('id')!r})"
        )
