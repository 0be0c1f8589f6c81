"""
Python client for interacting with the Splitwise REST API.

This package provides a `SplitwiseClient` class that authenticates
against Splitwise with the OAuth2 authorization code grant and
performs typed operations on expenses, groups, friends and comments.

The first run opens the Splitwise consent page and waits for the
redirect on a local callback listener.  The resulting token is cached
in a JSON file and refreshed automatically when it expires.

Examples
--------

```python
from splitwise_api_client import (
    CreateExpenseRequest,
    ExistingUser,
    NewUser,
    SplitManually,
    SplitwiseClient,
    UserShare,
)

client = SplitwiseClient.from_credentials(
    "YOUR_CONSUMER_KEY",
    "YOUR_CONSUMER_SECRET",
    cache_path="~/.splitwise_token.json",
)

me = client.get_current_user()
expense = client.create_expense(
    CreateExpenseRequest(
        cost="25.00",
        description="Groceries",
        split=SplitManually(
            UserShare(ExistingUser(me.id), paid_share="25.00", owed_share="12.50"),
            UserShare(
                NewUser("Ada", "Lovelace", "ada@example.com"),
                paid_share="0.00",
                owed_share="12.50",
            ),
        ),
    )
)
```

Errors
------
Failures are raised as subclasses of `SplitwiseError`:
`SplitwiseAuthError` while obtaining credentials, `SplitwiseAPIError`
(with `UnexpectedStatusError` / `NotFoundError` carrying the HTTP
status) for the exchange itself, and `APIErrors` when Splitwise
reports business-rule errors inside an otherwise successful response.
"""

from .auth import (
    CachingTokenSource,
    LocalServerTokenSource,
    OAuthConfig,
    RefreshingTokenSource,
    Token,
)
from .client import SplitwiseClient
from .errors import APIErrors
from .exceptions import (
    CallbackTimeoutError,
    NotFoundError,
    ResponseDecodeError,
    SplitwiseAPIError,
    SplitwiseAuthError,
    SplitwiseError,
    StateMismatchError,
    TokenCacheError,
    UnexpectedStatusError,
)
from .forms import ArrayWriter, FormEncoder
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
    GroupType,
    ParseSentenceResult,
    RepeatInterval,
    User,
)
from .options import ExistingUser, NewUser, SplitEqually, SplitManually, UserShare

__all__ = [
    "SplitwiseClient",
    "Token",
    "OAuthConfig",
    "CachingTokenSource",
    "RefreshingTokenSource",
    "LocalServerTokenSource",
    "FormEncoder",
    "ArrayWriter",
    "ExistingUser",
    "NewUser",
    "SplitEqually",
    "SplitManually",
    "UserShare",
    "APIErrors",
    "SplitwiseError",
    "SplitwiseAuthError",
    "SplitwiseAPIError",
    "StateMismatchError",
    "CallbackTimeoutError",
    "TokenCacheError",
    "ResponseDecodeError",
    "UnexpectedStatusError",
    "NotFoundError",
    "Category",
    "Comment",
    "CreateExpenseRequest",
    "CreateFriendRequest",
    "CreateGroupRequest",
    "Expense",
    "Friend",
    "GetExpensesRequest",
    "Group",
    "GroupType",
    "ParseSentenceResult",
    "RepeatInterval",
    "User",
]
