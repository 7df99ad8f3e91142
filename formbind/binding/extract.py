"""
Form-value extraction shared by the url-encoded and multipart decoders.
"""

from __future__ import annotations

from typing import List, Optional, Tuple, Union

from .._datastructures import MultiDict

RawValue = Union[str, List[str]]


def lookup(fields: MultiDict, key: str) -> Tuple[Optional[RawValue], bool]:
    """
    Look up ``key`` in a parsed form.

    A single value comes back as a plain string, several values as a new
    list. A missing key returns ``(None, False)`` so the caller leaves the
    destination untouched.
    """
    values = fields.get_all(key) if key in fields else None
    if not values:
        return None, False

    if len(values) == 1:
        return values[0], True

    return list(values), True
