"""
Cache key derivation.

Logically identical queries always map to the same key; queries differing
in any parameter map to different keys. Components are quoted before they
are joined so a separator inside a value can never make two different
queries collide.
"""

import hashlib
from typing import Any, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import quote

ALL = "all"
SEPARATOR = ":"

QueryParams = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


def _quote(value: Any) -> str:
    return quote(str(value), safe="")


def _digest(prefix: str, key_string: str) -> str:
    return f"{prefix}:{hashlib.sha256(key_string.encode('utf-8')).hexdigest()}"


def normalize_query(query_params: Optional[QueryParams]) -> str:
    """Render query parameters as a canonical query string.

    Pairs are sorted by name then value, so parameter order in the URL does
    not matter while repeated parameters are all kept.
    """
    if not query_params:
        return ""
    items = query_params.items() if isinstance(query_params, Mapping) else query_params
    pairs = sorted((str(name), str(value)) for name, value in items)
    return "&".join(f"{_quote(name)}={_quote(value)}" for name, value in pairs)


def request_cache_key(path: str, query_params: Optional[QueryParams] = None) -> str:
    """Key for the HTTP response cache: normalized path plus query string."""
    normalized_path = path.rstrip("/") or "/"
    return _digest("response", f"{normalized_path}?{normalize_query(query_params)}")


def operation_cache_key(operation: str,
                        start_date: Optional[str] = None,
                        end_date: Optional[str] = None,
                        **filters: Any) -> str:
    """Key for a domain operation.

    Components are operation, start date, end date, then filters sorted by
    name. An omitted filter and an explicit ``"all"`` produce the same key.
    """
    parts = [_quote(operation), _quote(start_date or ALL), _quote(end_date or ALL)]
    for name in sorted(filters):
        value = filters[name]
        if value is None or value == "":
            value = ALL
        parts.append(f"{_quote(name)}={_quote(value)}")
    return _digest("op", SEPARATOR.join(parts))
