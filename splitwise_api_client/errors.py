"""
Decoding of the ``errors`` field found in Splitwise responses.

The service is inconsistent about the shape of this field.  Depending
on the endpoint it sends either a flat list::

    {"errors": ["invalid request"]}

or a map of field name to messages::

    {"errors": {"base": ["Invalid API Request: you do not have permission"]}}

Both are normalised into a single :class:`APIErrors` collection.  The
field is also present (empty) on successful responses, so callers must
check :meth:`APIErrors.count` before treating an envelope as a failure.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .exceptions import ResponseDecodeError, SplitwiseError

_MISSING = object()


def _decode_list(value: Any) -> Tuple[Tuple[str, ...], Dict[str, Tuple[str, ...]]]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise TypeError("not a list of strings")
    return tuple(value), {}


def _decode_map(value: Any) -> Tuple[Tuple[str, ...], Dict[str, Tuple[str, ...]]]:
    if not isinstance(value, dict):
        raise TypeError("not an object")
    by_field: Dict[str, Tuple[str, ...]] = {}
    for field, messages in value.items():
        if not isinstance(messages, list) or not all(isinstance(m, str) for m in messages):
            raise TypeError(f"messages for {field!r} are not a list of strings")
        by_field[field] = tuple(messages)
    return (), by_field


# Shapes are tried in order; the first one that decodes wins.
_DECODERS: Sequence[Callable[[Any], Tuple[Tuple[str, ...], Dict[str, Tuple[str, ...]]]]] = (
    _decode_list,
    _decode_map,
)


class APIErrors(SplitwiseError):
    """Normalised collection of error messages returned by the API.

    Parameters
    ----------
    messages : sequence of str, optional
        Messages that arrived as a flat list.
    by_field : mapping, optional
        Messages that arrived keyed by field name.  Each one is exposed
        as ``"<field>: <message>"``.

    Notes
    -----
    The collection is immutable.  Ordering of field-keyed messages
    follows the decoded mapping and should not be relied upon.
    """

    PREFIX = "api error(s): "

    def __init__(
        self,
        messages: Sequence[str] = (),
        by_field: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self._messages: Tuple[str, ...] = tuple(messages)
        self._by_field: Dict[str, Tuple[str, ...]] = {
            field: tuple(values) for field, values in (by_field or {}).items()
        }
        super().__init__(str(self))

    @classmethod
    def from_value(cls, value: Any) -> "APIErrors":
        """Decode the raw value of an ``errors`` field.

        ``None`` decodes to an empty collection.  Anything that is
        neither a list of strings nor a map of string lists raises
        :class:`~splitwise_api_client.exceptions.ResponseDecodeError`.
        """
        if value is None:
            return cls()
        failures: List[str] = []
        for decoder in _DECODERS:
            try:
                messages, by_field = decoder(value)
            except TypeError as exc:
                failures.append(str(exc))
                continue
            return cls(messages, by_field)
        raise ResponseDecodeError(
            f"cannot decode errors field ({'; '.join(failures)}): {value!r}"
        )

    @classmethod
    def from_response(cls, payload: Any, field: str = "errors") -> "APIErrors":
        """Decode the ``errors`` field of a response envelope.

        A missing field is an empty collection; a present but malformed
        one is a decode failure.
        """
        if not isinstance(payload, dict):
            return cls()
        value = payload.get(field, _MISSING)
        if value is _MISSING:
            return cls()
        return cls.from_value(value)

    def count(self) -> int:
        """Total number of individual messages."""
        return len(self._messages) + sum(len(v) for v in self._by_field.values())

    def messages(self) -> List[str]:
        errors = list(self._messages)
        for field, values in self._by_field.items():
            for value in values:
                errors.append(f"{field}: {value}")
        return errors

    def __len__(self) -> int:
        return self.count()

    def __iter__(self) -> Iterator[str]:
        return iter(self.messages())

    def __str__(self) -> str:
        if self.count() == 0:
            return ""
        return self.PREFIX + ", ".join(self.messages())

    def __repr__(self) -> str:
        return f"APIErrors({self.messages()!r})"
