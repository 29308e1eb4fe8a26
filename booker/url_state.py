"""Shareable URL query state for a booking page."""

from __future__ import annotations

import re
from typing import Iterable, Mapping
from urllib.parse import parse_qsl, urlencode

_METADATA_KEY = re.compile(r"^metadata\[(?P<name>[^\]]+)\]$")


class UrlState:
    """Ordered query parameters of the booking page URL.

    Only the first value of a repeated key is kept, matching how the page
    reads single parameters.
    """

    def __init__(self, params: Mapping[str, str] | Iterable[tuple[str, str]] | None = None) -> None:
        self._params: dict[str, str] = {}
        if params is None:
            return
        items = params.items() if isinstance(params, Mapping) else params
        for key, value in items:
            self._params.setdefault(str(key), "" if value is None else str(value))

    @classmethod
    def from_query_string(cls, query: str) -> "UrlState":
        return cls(parse_qsl(query.lstrip("?"), keep_blank_values=True))

    def get(self, key: str) -> str | None:
        return self._params.get(key)

    def set(self, key: str, value: str | int | None) -> None:
        if value is None or value == "":
            self._params.pop(key, None)
        else:
            self._params[key] = str(value)

    def keys(self) -> list[str]:
        return list(self._params)

    def metadata(self) -> dict[str, str]:
        """Fold ``metadata[<name>]=value`` parameters into ``{name: value}``."""
        result: dict[str, str] = {}
        for key, value in self._params.items():
            match = _METADATA_KEY.match(key)
            if match:
                result[match.group("name")] = value
        return result

    def booking_id(self) -> int:
        raw = self._params.get("bookingId") or "0"
        try:
            return int(raw)
        except ValueError:
            return 0

    def to_query_string(self) -> str:
        return urlencode(self._params)

    def to_dict(self) -> dict[str, str]:
        return dict(self._params)
