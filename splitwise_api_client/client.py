"""
The `SplitwiseClient` class and its endpoint methods.

Every operation is a thin wrapper around :meth:`SplitwiseClient._request`:
build a query string or a :class:`~splitwise_api_client.forms.FormEncoder`
body, send it with the current bearer token, map the HTTP status and
decode the JSON envelope into one of the records in
:mod:`splitwise_api_client.models`.

Examples
--------

```python
from splitwise_api_client import SplitwiseClient, CreateGroupRequest, ExistingUser, NewUser

client = SplitwiseClient.from_env()

group = client.create_group(
    CreateGroupRequest(name="Flat"),
    ExistingUser(client.get_current_user().id),
    NewUser("Grace", "Hopper", "grace@example.com"),
)
for expense in client.get_expenses():
    print(expense.description, expense.cost)
```

Status handling
---------------
200 and 201 are decoded.  404 raises :class:`NotFoundError` and any
other status raises :class:`UnexpectedStatusError` carrying the code.
A decoded envelope whose ``errors`` field is not empty raises
:class:`~splitwise_api_client.errors.APIErrors`.
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlencode

import requests
from dotenv import load_dotenv

from .auth import (
    CachingTokenSource,
    LocalServerTokenSource,
    OAuthConfig,
    REDIRECT_URL,
    RefreshingTokenSource,
    TokenSource,
)
from .errors import APIErrors
from .exceptions import (
    NotFoundError,
    ResponseDecodeError,
    SplitwiseAPIError,
    UnexpectedStatusError,
)
from .forms import FormEncoder
from .models import (
    Category,
    Comment,
    CreateExpenseRequest,
    CreateFriendRequest,
    CreateGroupRequest,
    Expense,
    Friend,
    GetExpensesRequest,
    Group,
    ParseSentenceResult,
    User,
)
from .options import UserOption

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://secure.splitwise.com/api/v3.0/"
DEFAULT_TOKEN_CACHE = "~/.splitwise_token.json"


class SplitwiseClient:
    """A client for the Splitwise REST API.

    Parameters
    ----------
    token_source : TokenSource
        Anything with a ``get_token()`` method returning a
        :class:`~splitwise_api_client.auth.Token`.  It is asked for a
        token before every request, so a refreshing source keeps the
        client authenticated across expiries.
    base_url : str, optional
        Override the API base URL.
    timeout : float, optional
        Timeout in seconds for each HTTP request.
    session : requests.Session, optional
        Send requests through this session instead of the module level
        :func:`requests.request`.

    Notes
    -----
    POST bodies are form-encoded.  Nested objects (group members,
    expense shares) are flattened into ``<group>__<index>__<field>``
    keys by :class:`~splitwise_api_client.forms.FormEncoder`.

    Splitwise reports some business-rule failures inside a 200 or 201
    response.  Every decoded response is therefore checked for a
    non-empty ``errors`` field, raised as
    :class:`~splitwise_api_client.errors.APIErrors`.
    """

    def __init__(
        self,
        *,
        token_source: TokenSource,
        base_url: str = DEFAULT_BASE_URL,
        timeout: Optional[float] = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        if token_source is None:
            raise ValueError("token_source must be provided")
        self.token_source = token_source
        self.base_url = base_url
        self.timeout = timeout
        self.session = session

    @classmethod
    def from_credentials(
        cls,
        client_id: str,
        client_secret: str,
        *,
        cache_path: Optional[str] = DEFAULT_TOKEN_CACHE,
        redirect_url: str = REDIRECT_URL,
        auth_timeout: Optional[float] = None,
        open_browser: bool = True,
        **kwargs: Any,
    ) -> "SplitwiseClient":
        """Build a client that authorizes interactively on first use.

        The token is cached at ``cache_path`` (unless it is ``None``)
        and refreshed in place once it expires.
        """
        config = OAuthConfig(client_id, client_secret, redirect_url=redirect_url)
        source: TokenSource = LocalServerTokenSource(
            config, timeout=auth_timeout, open_browser=open_browser
        )
        on_refresh = None
        if cache_path:
            cache = CachingTokenSource(source, cache_path)
            source, on_refresh = cache, cache.save
        return cls(
            token_source=RefreshingTokenSource(config, source, on_refresh=on_refresh),
            **kwargs,
        )

    @classmethod
    def from_env(cls) -> "SplitwiseClient":
        """Build a client from ``SPLITWISE_*`` environment variables.

        A ``.env`` file in the working directory is loaded first without
        overriding variables that are already set.
        """
        load_dotenv(override=False)
        client_id = os.environ.get("SPLITWISE_CLIENT_ID")
        client_secret = os.environ.get("SPLITWISE_CLIENT_SECRET")
        if not client_id or not client_secret:
            raise ValueError("Missing SPLITWISE_CLIENT_ID or SPLITWISE_CLIENT_SECRET")

        auth_timeout = os.environ.get("SPLITWISE_AUTH_TIMEOUT_SECONDS")
        return cls.from_credentials(
            client_id,
            client_secret,
            cache_path=os.environ.get("SPLITWISE_TOKEN_CACHE", DEFAULT_TOKEN_CACHE),
            redirect_url=os.environ.get("SPLITWISE_REDIRECT_URL", REDIRECT_URL),
            auth_timeout=float(auth_timeout) if auth_timeout else None,
            timeout=float(os.environ.get("SPLITWISE_HTTP_TIMEOUT_SECONDS", "30")),
        )

    # ------------------------------------------------------------------
    # HTTP request helpers
    # ------------------------------------------------------------------
    def _prepare_url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Join ``path`` (and an optional query string) to ``base_url``."""
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        form: Optional[FormEncoder] = None,
    ) -> Dict[str, Any]:
        """Perform an HTTP request against the Splitwise API.

        Parameters
        ----------
        method : str
            The HTTP verb, ``"GET"`` or ``"POST"``.
        path : str
            The endpoint path relative to the base URL, e.g.
            ``"get_expense/42"``.
        params : dict, optional
            Query parameters.
        form : FormEncoder, optional
            A form body, sent as ``application/x-www-form-urlencoded``.

        Returns
        -------
        dict
            The decoded JSON envelope.

        Raises
        ------
        NotFoundError
            If the API answers 404.
        UnexpectedStatusError
            For any status other than 200, 201 or 404.
        ResponseDecodeError
            If the body is not a JSON object.
        APIErrors
            If the envelope carries a non-empty ``errors`` field.
        SplitwiseAPIError
            If the request could not be sent at all.
        SplitwiseAuthError
            If no token could be obtained.
        """
        url = self._prepare_url(path, params)
        token = self.token_source.get_token()
        headers = {
            "Authorization": token.authorization_header(),
            "Accept": "application/json",
        }
        data = None
        if form is not None:
            data = form.encode()
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        logger.debug("%s %s", method.upper(), url)
        send = self.session.request if self.session is not None else requests.request
        try:
            response = send(
                method=method.upper(),
                url=url,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SplitwiseAPIError(f"Failed to connect to {url}: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f"404 Not Found: {method.upper()} {path}")
        if response.status_code not in (200, 201):
            raise UnexpectedStatusError(
                response.status_code,
                f"unexpected status {response.status_code} for {method.upper()} {path}",
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ResponseDecodeError(f"decode: {exc}") from exc
        if not isinstance(payload, dict):
            raise ResponseDecodeError(f"decode: expected a JSON object from {path}")

        errors = APIErrors.from_response(payload)
        if errors.count() > 0:
            raise errors
        return payload

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request("GET", path, params=params)

    def _post(self, path: str, form: Optional[FormEncoder] = None) -> Dict[str, Any]:
        return self._request("POST", path, form=form)

    def _post_success(self, path: str, form: Optional[FormEncoder] = None) -> None:
        """POST to an endpoint that answers ``{"success": bool}``."""
        payload = self._post(path, form)
        if not payload.get("success"):
            raise SplitwiseAPIError(f"{path} was not successful")

    @staticmethod
    def _object(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
        value = payload.get(key)
        if not isinstance(value, dict):
            raise ResponseDecodeError(f"decode: response has no {key!r} object")
        return value

    # ------------------------------------------------------------------
    # Users and categories
    # ------------------------------------------------------------------
    def get_current_user(self) -> User:
        return User.from_dict(self._object(self._get("get_current_user"), "user"))

    def get_user(self, user_id: int) -> User:
        return User.from_dict(self._object(self._get(f"get_user/{user_id}"), "user"))

    def get_categories(self) -> List[Category]:
        payload = self._get("get_categories")
        return [Category.from_dict(c) for c in payload.get("categories") or []]

    def parse_sentence(
        self,
        text: str,
        *,
        group_id: Optional[int] = None,
        friend_id: Optional[int] = None,
        autosave: bool = False,
    ) -> ParseSentenceResult:
        """Ask Splitwise to turn a sentence such as "I owe Ada 5 bucks"
        into an expense.  With ``autosave`` the expense is also created.
        """
        form = FormEncoder()
        form.set_string("input", text)
        if group_id is not None:
            form.set_int("group_id", group_id)
        if friend_id is not None:
            form.set_int("friend_id", friend_id)
        form.set_bool("autosave", autosave)
        return ParseSentenceResult.from_dict(self._post("parse_sentence", form))

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------
    def create_expense(self, req: CreateExpenseRequest) -> Expense:
        """Create an expense split according to ``req.split``.

        Examples
        --------

        >>> client.create_expense(CreateExpenseRequest(
        ...     cost="20.00",
        ...     description="Dinner",
        ...     split=SplitManually(
        ...         UserShare(ExistingUser(1), paid_share="20.00", owed_share="10.00"),
        ...         UserShare(ExistingUser(2), paid_share="0.00", owed_share="10.00"),
        ...     ),
        ... ))
        """
        if req.split is None:
            raise ValueError("split must be provided")
        form = FormEncoder()
        form.set_string("cost", req.cost)
        form.set_string("description", req.description)
        form.set_bool("payment", req.payment)
        if req.details is not None:
            form.set_string("details", req.details)
        if req.date is not None:
            form.set_string("date", req.date.isoformat())
        if req.repeat_interval is not None:
            form.set_string("repeat_interval", req.repeat_interval.value)
        if req.currency_code is not None:
            form.set_string("currency_code", req.currency_code)
        if req.category_id is not None:
            form.set_int("category_id", req.category_id)
        req.split.prepare_request(form)

        payload = self._post("create_expense", form)
        expenses = payload.get("expenses")
        if isinstance(expenses, list) and expenses:
            return Expense.from_dict(expenses[0])
        return Expense.from_dict(self._object(payload, "expense"))

    def get_expense(self, expense_id: int) -> Expense:
        return Expense.from_dict(self._object(self._get(f"get_expense/{expense_id}"), "expense"))

    def get_expenses(self, req: Optional[GetExpensesRequest] = None) -> List[Expense]:
        """List expenses, newest first.

        Pass ``offset`` and ``limit`` on ``req`` to page through results.
        """
        req = req or GetExpensesRequest()
        params: Dict[str, Any] = {}
        if req.group_id is not None:
            params["group_id"] = req.group_id
        if req.friend_id is not None:
            params["friend_id"] = req.friend_id
        for name in ("dated_after", "dated_before", "updated_after", "updated_before"):
            value = getattr(req, name)
            if value is not None:
                params[name] = _format_date(value)
        if req.offset > 0:
            params["offset"] = req.offset
        if req.limit > 0:
            params["limit"] = req.limit
        payload = self._get("get_expenses", params)
        return [Expense.from_dict(e) for e in payload.get("expenses") or []]

    def delete_expense(self, expense_id: int) -> None:
        self._post_success(f"delete_expense/{expense_id}")

    def undelete_expense(self, expense_id: int) -> None:
        self._post_success(f"undelete_expense/{expense_id}")

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------
    def get_comments(self, expense_id: int) -> List[Comment]:
        payload = self._get("get_comments", {"expense_id": expense_id})
        return [Comment.from_dict(c) for c in payload.get("comments") or []]

    def get_comment(self, comment_id: int) -> Comment:
        return Comment.from_dict(self._object(self._get(f"get_comment/{comment_id}"), "comment"))

    def create_comment(self, expense_id: int, content: str) -> Comment:
        form = FormEncoder()
        form.set_int("expense_id", expense_id)
        form.set_string("content", content)
        return Comment.from_dict(self._object(self._post("create_comment", form), "comment"))

    def delete_comment(self, comment_id: int) -> Comment:
        payload = self._post(f"delete_comment/{comment_id}")
        return Comment.from_dict(self._object(payload, "comment"))

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------
    def get_groups(self) -> List[Group]:
        payload = self._get("get_groups")
        return [Group.from_dict(g) for g in payload.get("groups") or []]

    def get_group(self, group_id: int) -> Group:
        return Group.from_dict(self._object(self._get(f"get_group/{group_id}"), "group"))

    def create_group(
        self, req: CreateGroupRequest, user: UserOption, *users: UserOption
    ) -> Group:
        """Create a group with at least one member.

        Each member is either an :class:`ExistingUser` or a
        :class:`NewUser` to be invited.
        """
        form = FormEncoder()
        form.set_string("name", req.name)
        form.set_string("whiteboard", req.whiteboard)
        form.set_string("group_type", req.group_type.value)
        form.set_bool("simplify_by_default", req.simplify_by_default)

        members = form.begin_array("users")
        for member in (user,) + users:
            member.prepare_request(members)
            members.advance()

        return Group.from_dict(self._object(self._post("create_group", form), "group"))

    def delete_group(self, group_id: int) -> None:
        self._post_success(f"delete_group/{group_id}")

    def undelete_group(self, group_id: int) -> None:
        self._post_success(f"undelete_group/{group_id}")

    def add_user_to_group(self, group_id: int, user: UserOption) -> None:
        form = FormEncoder()
        form.set_int("group_id", group_id)
        user.prepare_request(form)
        self._post_success("add_user_to_group", form)

    def remove_user_from_group(self, group_id: int, user_id: int) -> None:
        form = FormEncoder()
        form.set_int("group_id", group_id)
        form.set_int("user_id", user_id)
        self._post_success("remove_user_from_group", form)

    # ------------------------------------------------------------------
    # Friends
    # ------------------------------------------------------------------
    def get_friends(self) -> List[Friend]:
        payload = self._get("get_friends")
        return [Friend.from_dict(f) for f in payload.get("friends") or []]

    def get_friend(self, friend_id: int) -> Friend:
        return Friend.from_dict(self._object(self._get(f"get_friend/{friend_id}"), "friend"))

    def create_friend(self, req: CreateFriendRequest) -> Friend:
        form = FormEncoder()
        form.set_string("user_email", req.email)
        form.set_string("user_first_name", req.first_name)
        form.set_string("user_last_name", req.last_name)
        return Friend.from_dict(self._object(self._post("create_friend", form), "friend"))

    def create_friends(self, *reqs: CreateFriendRequest) -> List[Friend]:
        form = FormEncoder()
        friends = form.begin_array("friends")
        for req in reqs:
            friends.set_string("user_first_name", req.first_name)
            friends.set_string("user_last_name", req.last_name)
            friends.set_string("user_email", req.email)
            friends.advance()
        payload = self._post("create_friends", form)
        return [Friend.from_dict(f) for f in payload.get("users") or payload.get("friends") or []]

    def delete_friend(self, friend_id: int) -> None:
        self._post_success(f"delete_friend/{friend_id}")


def _format_date(value: Union[date, datetime]) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%Y-%m-%d")
