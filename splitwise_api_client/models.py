"""
Typed records for Splitwise request and response payloads.

Responses are decoded with ``from_dict`` constructors that tolerate
missing keys.  Monetary amounts are kept as the decimal strings the API
sends; timestamps become timezone-aware UTC datetimes.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from .exceptions import ResponseDecodeError
from .options import SplitStrategy

E = TypeVar("E", bound=enum.Enum)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp; a trailing ``Z`` denotes UTC."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ResponseDecodeError(f"timestamp is not a string: {value!r}")
    iso_str = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(iso_str)
    except ValueError as exc:
        raise ResponseDecodeError(f"invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _enum(enum_cls: Type[E], value: Any, default: E) -> E:
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ResponseDecodeError(
            f"unknown {enum_cls.__name__}: {value!r}"
        ) from exc


def _list(cls: Any, items: Optional[List[Dict[str, Any]]]) -> list:
    return [cls.from_dict(item) for item in (items or [])]


class Registration(str, enum.Enum):
    DUMMY = "dummy"
    CONFIRMED = "confirmed"
    INVITED = "invited"


class RepeatInterval(str, enum.Enum):
    NEVER = "never"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class GroupType(str, enum.Enum):
    OTHER = "other"
    APARTMENT = "apartment"
    HOUSE = "house"
    TRIP = "trip"


@dataclass
class Picture:
    small: Optional[str] = None
    medium: Optional[str] = None
    large: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "Picture":
        raw = raw or {}
        return cls(small=raw.get("small"), medium=raw.get("medium"), large=raw.get("large"))


@dataclass
class NotificationSet:
    added_as_friend: bool = False
    added_to_group: bool = False
    expense_added: bool = False
    expense_updated: bool = False
    bills: bool = False
    payments: bool = False
    monthly_summary: bool = False
    announcements: bool = False

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "NotificationSet":
        raw = raw or {}
        return cls(**{name: bool(raw.get(name, False)) for name in cls.__dataclass_fields__})


@dataclass
class User:
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    picture: Picture = field(default_factory=Picture)
    registration_status: Registration = Registration.CONFIRMED
    # Only populated for the current user
    default_currency: Optional[str] = None
    locale: Optional[str] = None
    notifications_read: Optional[datetime] = None
    notifications_count: int = 0
    notifications: NotificationSet = field(default_factory=NotificationSet)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "User":
        return cls(
            id=raw.get("id", 0),
            first_name=raw.get("first_name"),
            last_name=raw.get("last_name"),
            email=raw.get("email"),
            picture=Picture.from_dict(raw.get("picture")),
            registration_status=_enum(
                Registration, raw.get("registration_status"), Registration.CONFIRMED
            ),
            default_currency=raw.get("default_currency"),
            locale=raw.get("locale"),
            notifications_read=parse_datetime(raw.get("notifications_read")),
            notifications_count=raw.get("notifications_count") or 0,
            notifications=NotificationSet.from_dict(raw.get("notifications")),
        )


@dataclass
class Subcategory:
    id: int
    name: str

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Subcategory":
        return cls(id=raw.get("id", 0), name=raw.get("name", ""))


@dataclass
class Category:
    id: int
    name: str
    subcategories: List[Subcategory] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "Category":
        raw = raw or {}
        return cls(
            id=raw.get("id", 0),
            name=raw.get("name", ""),
            subcategories=_list(Subcategory, raw.get("subcategories")),
        )


@dataclass
class Balance:
    currency_code: str
    amount: str

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Balance":
        return cls(currency_code=raw.get("currency_code", ""), amount=raw.get("amount", "0.0"))


@dataclass
class BalanceByGroup:
    group_id: int
    balance: List[Balance] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "BalanceByGroup":
        return cls(group_id=raw.get("group_id", 0), balance=_list(Balance, raw.get("balance")))


@dataclass
class Friend:
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    picture: Picture = field(default_factory=Picture)
    balance: List[Balance] = field(default_factory=list)
    groups: List[BalanceByGroup] = field(default_factory=list)
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Friend":
        return cls(
            id=raw.get("id", 0),
            first_name=raw.get("first_name"),
            last_name=raw.get("last_name"),
            email=raw.get("email"),
            picture=Picture.from_dict(raw.get("picture")),
            balance=_list(Balance, raw.get("balance")),
            groups=_list(BalanceByGroup, raw.get("groups")),
            updated_at=parse_datetime(raw.get("updated_at")),
        )


@dataclass
class GroupDebt:
    from_user: int
    to_user: int
    amount: str
    currency_code: str

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "GroupDebt":
        return cls(
            from_user=raw.get("from", 0),
            to_user=raw.get("to", 0),
            amount=raw.get("amount", "0.0"),
            currency_code=raw.get("currency_code", ""),
        )


@dataclass
class GroupMember:
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    picture: Picture = field(default_factory=Picture)
    registration_status: Registration = Registration.CONFIRMED
    balance: List[Balance] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "GroupMember":
        return cls(
            id=raw.get("id", 0),
            first_name=raw.get("first_name"),
            last_name=raw.get("last_name"),
            email=raw.get("email"),
            picture=Picture.from_dict(raw.get("picture")),
            registration_status=_enum(
                Registration, raw.get("registration_status"), Registration.CONFIRMED
            ),
            balance=_list(Balance, raw.get("balance")),
        )


@dataclass
class Group:
    id: int
    name: str = ""
    group_type: GroupType = GroupType.OTHER
    updated_at: Optional[datetime] = None
    simplify_by_default: bool = False
    members: List[GroupMember] = field(default_factory=list)
    original_debts: List[GroupDebt] = field(default_factory=list)
    simplified_debts: List[GroupDebt] = field(default_factory=list)
    whiteboard: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Group":
        return cls(
            id=raw.get("id", 0),
            name=raw.get("name") or "",
            group_type=_enum(GroupType, raw.get("group_type"), GroupType.OTHER),
            updated_at=parse_datetime(raw.get("updated_at")),
            simplify_by_default=bool(raw.get("simplify_by_default", False)),
            members=_list(GroupMember, raw.get("members")),
            original_debts=_list(GroupDebt, raw.get("original_debts")),
            simplified_debts=_list(GroupDebt, raw.get("simplified_debts")),
            whiteboard=raw.get("whiteboard"),
        )


@dataclass
class ExpenseUser:
    user_id: int
    paid_share: str = "0.0"
    owed_share: str = "0.0"
    net_balance: str = "0.0"
    user: Optional[User] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ExpenseUser":
        user = raw.get("user")
        return cls(
            user_id=raw.get("user_id", 0),
            paid_share=raw.get("paid_share", "0.0"),
            owed_share=raw.get("owed_share", "0.0"),
            net_balance=raw.get("net_balance", "0.0"),
            user=User.from_dict(user) if user else None,
        )


@dataclass
class Expense:
    id: int
    cost: str = "0.0"
    description: str = ""
    details: Optional[str] = None
    payment: bool = False
    currency_code: Optional[str] = None
    group_id: Optional[int] = None
    repeat_interval: RepeatInterval = RepeatInterval.NEVER
    date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    category: Optional[Category] = None
    users: List[ExpenseUser] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Expense":
        category = raw.get("category")
        return cls(
            id=raw.get("id", 0),
            cost=raw.get("cost") or "0.0",
            description=raw.get("description") or "",
            details=raw.get("details"),
            payment=bool(raw.get("payment", False)),
            currency_code=raw.get("currency_code"),
            group_id=raw.get("group_id"),
            repeat_interval=_enum(
                RepeatInterval, raw.get("repeat_interval"), RepeatInterval.NEVER
            ),
            date=parse_datetime(raw.get("date")),
            created_at=parse_datetime(raw.get("created_at")),
            updated_at=parse_datetime(raw.get("updated_at")),
            deleted_at=parse_datetime(raw.get("deleted_at")),
            category=Category.from_dict(category) if category else None,
            users=_list(ExpenseUser, raw.get("users")),
        )


@dataclass
class Comment:
    id: int
    content: str = ""
    comment_type: Optional[str] = None
    relation_type: Optional[str] = None
    relation_id: Optional[int] = None
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    user: Optional[User] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Comment":
        user = raw.get("user")
        return cls(
            id=raw.get("id", 0),
            content=raw.get("content") or "",
            comment_type=raw.get("comment_type"),
            relation_type=raw.get("relation_type"),
            relation_id=raw.get("relation_id"),
            created_at=parse_datetime(raw.get("created_at")),
            deleted_at=parse_datetime(raw.get("deleted_at")),
            user=User.from_dict(user) if user else None,
        )


@dataclass
class ParseSentenceResult:
    valid: bool
    expense: Optional[Expense] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ParseSentenceResult":
        expense = raw.get("expense")
        return cls(
            valid=bool(raw.get("valid", False)),
            expense=Expense.from_dict(expense) if expense else None,
            error=raw.get("error"),
        )


# ----------------------------------------------------------------------
# Request records
# ----------------------------------------------------------------------
@dataclass
class CreateExpenseRequest:
    """Parameters for :meth:`SplitwiseClient.create_expense`.

    ``split`` is required and decides who paid and who owes.
    """

    cost: str
    description: str
    split: SplitStrategy
    payment: bool = False
    details: Optional[str] = None
    date: Optional[Union[date, datetime]] = None
    repeat_interval: Optional[RepeatInterval] = None
    currency_code: Optional[str] = None
    category_id: Optional[int] = None


@dataclass
class GetExpensesRequest:
    group_id: Optional[int] = None
    friend_id: Optional[int] = None
    dated_after: Optional[date] = None
    dated_before: Optional[date] = None
    updated_after: Optional[date] = None
    updated_before: Optional[date] = None
    limit: int = 0
    offset: int = 0


@dataclass
class CreateGroupRequest:
    name: str
    whiteboard: str = ""
    group_type: GroupType = GroupType.OTHER
    simplify_by_default: bool = False


@dataclass
class CreateFriendRequest:
    first_name: str
    last_name: str
    email: str
