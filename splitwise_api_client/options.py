"""
Payload options that serialise themselves into a form body.

Two closed families live here:

* user references -- :class:`ExistingUser` and :class:`NewUser` --
  point at an account or describe one to create in the same request;
* split strategies -- :class:`SplitEqually` and :class:`SplitManually`
  -- decide how an expense's cost is divided.

Each option only knows how to write its own fields through
:meth:`prepare_request`.  Callers and the client never switch on the
concrete type.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple, Union

from .forms import FieldWriter, FormEncoder


def _amount(value: Union[str, Decimal]) -> str:
    # Amounts go over the wire as decimal text; floats are not accepted.
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, str):
        return value
    raise TypeError(f"amount must be a str or Decimal, got {type(value).__name__}")


@dataclass(frozen=True)
class ExistingUser:
    """Reference an already existing user by id."""

    user_id: int

    def prepare_request(self, writer: FieldWriter) -> None:
        writer.set_int("user_id", self.user_id)


@dataclass(frozen=True)
class NewUser:
    """Create a new user as part of the same request."""

    first_name: str
    last_name: str
    email: str

    def prepare_request(self, writer: FieldWriter) -> None:
        writer.set_string("first_name", self.first_name)
        writer.set_string("last_name", self.last_name)
        writer.set_string("email", self.email)


UserOption = Union[ExistingUser, NewUser]


@dataclass(frozen=True)
class UserShare:
    """One participant of a manually split expense."""

    user: UserOption
    paid_share: Union[str, Decimal]
    owed_share: Union[str, Decimal]


@dataclass(frozen=True)
class SplitEqually:
    """Split the cost equally between every member of a group."""

    group_id: int

    def prepare_request(self, form: FormEncoder) -> None:
        form.set_int("group_id", self.group_id)


@dataclass(frozen=True)
class SplitManually:
    """Give every participant an explicit paid and owed share."""

    shares: Tuple[UserShare, ...]

    def __init__(self, *shares: UserShare) -> None:
        object.__setattr__(self, "shares", tuple(shares))

    def prepare_request(self, form: FormEncoder) -> None:
        users = form.begin_array("users")
        for share in self.shares:
            share.user.prepare_request(users)
            users.set_string("owed_share", _amount(share.owed_share))
            users.set_string("paid_share", _amount(share.paid_share))
            users.advance()


SplitStrategy = Union[SplitEqually, SplitManually]
