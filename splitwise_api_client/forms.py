"""
Form body construction for Splitwise POST requests.

The Splitwise API accepts ``application/x-www-form-urlencoded`` bodies
and has no native notion of nested objects.  Repeated objects are
flattened into keys of the form ``<group>__<index>__<field>``, e.g.::

    users__0__user_id=1
    users__0__paid_share=10.00
    users__1__first_name=Alan

:class:`FormEncoder` accumulates top-level fields and hands out
:class:`ArrayWriter` instances that namespace keys for one such group.
"""

from __future__ import annotations

from typing import Dict, Iterator, Protocol, Tuple
from urllib.parse import urlencode


class FieldWriter(Protocol):
    """Anything a payload option can write its fields into."""

    def set_string(self, key: str, value: str) -> None: ...

    def set_int(self, key: str, value: int) -> None: ...


class FormEncoder:
    """Write-only accumulator for a flat form body.

    Setting a key twice keeps the last value; every field on the wire
    is single-valued.
    """

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    def set_string(self, key: str, value: str) -> None:
        self._values[key] = value

    def set_bool(self, key: str, value: bool) -> None:
        self._values[key] = "true" if value else "false"

    def set_int(self, key: str, value: int) -> None:
        self._values[key] = str(int(value))

    def begin_array(self, group: str) -> "ArrayWriter":
        """Start an indexed sub-group named ``group``, positioned at index 0."""
        return ArrayWriter(self, group)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._values)

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._values.items())

    def encode(self) -> str:
        """Return the body encoded as ``application/x-www-form-urlencoded``."""
        return urlencode(list(self._values.items()))

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __repr__(self) -> str:
        return f"FormEncoder({self._values!r})"


class ArrayWriter:
    """Writes the fields of consecutive array elements into a form.

    Precondition: elements are written as contiguous blocks.  Write all
    fields of the current element, then call :meth:`advance` before
    writing the next one.  There is no way to go back to an earlier
    index, and the remote service cannot detect fields written to the
    wrong element.
    """

    def __init__(self, form: FormEncoder, group: str) -> None:
        self._form = form
        self._group = group
        self._index = 0

    @property
    def index(self) -> int:
        return self._index

    def _key(self, field: str) -> str:
        return f"{self._group}__{self._index}__{field}"

    def set_string(self, key: str, value: str) -> None:
        self._form.set_string(self._key(key), value)

    def set_int(self, key: str, value: int) -> None:
        self._form.set_int(self._key(key), value)

    def advance(self) -> None:
        """Move on to the next element."""
        self._index += 1
