"""
User domain consumed by the gateway.

``UserId``, ``Username`` and ``Email`` are only obtainable through their
smart constructors; invalid input raises ``ValidationError`` and never
produces a value. ``UserService`` is implemented by the persistence layer of
a deployment; the gateway only consumes it.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Mapping, NewType, Optional, Protocol, Sequence

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from auth_gateway.exceptions import ValidationError


UserId = NewType("UserId", str)
Username = NewType("Username", str)
Email = NewType("Email", str)

USERNAME_MIN_LENGTH = 4

_email_adapter = TypeAdapter(EmailStr)


def make_user_id(value: Any) -> UserId:
    """
    Validate a UUIDv4 string.

    Example:
        >>> make_user_id("0b9f2b4e-8a0c-4b64-9f0a-3c2f7d1e5a6b")
        '0b9f2b4e-8a0c-4b64-9f0a-3c2f7d1e5a6b'
    """
    if not isinstance(value, str):
        raise ValidationError("UserId must be valid UUID v4")

    try:
        parsed = uuid.UUID(value)
    except ValueError as e:
        raise ValidationError("UserId must be valid UUID v4") from e

    # uuid.UUID also accepts braces, urn: prefixes and unhyphenated hex
    if str(parsed) != value.lower() or parsed.version != 4:
        raise ValidationError("UserId must be valid UUID v4")

    return UserId(value)


def make_username(value: Any) -> Username:
    if not isinstance(value, str) or len(value) < USERNAME_MIN_LENGTH:
        raise ValidationError(
            f"Username must be at least {USERNAME_MIN_LENGTH} characters long"
        )
    return Username(value)


def make_email(value: Any) -> Email:
    try:
        return Email(str(_email_adapter.validate_python(value)))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid email address: {value!r}") from e


def new_user_id() -> UserId:
    return UserId(str(uuid.uuid4()))


@dataclass(frozen=True)
class User:
    id: UserId
    email: Email
    username: Optional[Username] = None


@dataclass(frozen=True)
class CreateUser:
    email: str
    password: Optional[str] = None
    username: Optional[str] = None


# Selectable fields for UserService.find_by_email
UserFields = Sequence[str]

# Keep in sync with User by hand
USER_FIELDS_ALL: UserFields = ("id", "email", "username")


def map_to_user(doc: Mapping[str, Any]) -> User:
    """
    Re-validate a stored user document into a ``User``.

    A missing username stays ``None``; a present one must be valid.
    """
    username = doc.get("username")
    return User(
        id=make_user_id(doc.get("id")),
        email=make_email(doc.get("email")),
        username=make_username(username) if username is not None else None,
    )


class UserService(Protocol):
    """Persistence collaborator used to resolve providers' principals into users."""

    async def find_by_email(self, email: Email, fields: UserFields = USER_FIELDS_ALL) -> Optional[User]:
        """Find a user by email; used to check whether a user exists."""
        ...

    async def find_by_id(self, id: UserId) -> Optional[User]:
        ...

    async def create_user(self, data: CreateUser) -> User:
        """Create a user; the service generates a unique id."""
        ...


__all__ = [
    "UserId",
    "Username",
    "Email",
    "User",
    "CreateUser",
    "UserFields",
    "USER_FIELDS_ALL",
    "UserService",
    "make_user_id",
    "make_username",
    "make_email",
    "new_user_id",
    "map_to_user",
]
