"""
Request-value parsers.

Parsers read values that do not come from the body:

- QueryParser: query string, ``query`` annotations
- HeaderParser: request headers, ``header`` annotations
- CookieParser: Cookie header, ``cookie`` annotations
- PathParser: router path parameters, ``path`` annotations

``Parsers`` runs every registered parser over the fields of a dataclass
destination and converts the raw values through the coercion engine, so
query values split into sequence fields exactly like form values do.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import (
    Any, Callable, Dict, Iterator, Optional, Protocol, Tuple, runtime_checkable
)

from ..faults import NotSupported
from ..request import Request
from .coercion import CoercionOptions, is_zero, set_field
from .extract import RawValue, lookup
from .fields import SKIP, FieldCache

logger = logging.getLogger("formbind.binding.parsers")

SPLIT_SYMBOL = ","

PathValueFunc = Callable[[Request, str], Tuple[str, bool]]


@runtime_checkable
class Parser(Protocol):
    """Reads one raw value for an annotation key from a request."""

    namespace: str

    def parse(self, request: Request, key: str) -> Tuple[Optional[RawValue], bool]:
        ...


class QueryParser:
    """
    Query string values.

    A single occurrence comes back as a string, repeated keys as a list
    in query order.
    """

    namespace = "query"

    def parse(self, request: Request, key: str) -> Tuple[Optional[RawValue], bool]:
        return lookup(request.query_params, key)


class HeaderParser:
    """
    Header values.

    ``X-Forwarded-For,X-Real-IP`` tries each header in order and returns
    the first non-empty value.
    """

    namespace = "header"

    def parse(self, request: Request, key: str) -> Tuple[Optional[RawValue], bool]:
        for name in key.split(SPLIT_SYMBOL):
            value = request.header(name.strip())
            if value:
                return value, True
        return None, False


class CookieParser:
    namespace = "cookie"

    def parse(self, request: Request, key: str) -> Tuple[Optional[RawValue], bool]:
        cookies = request.cookies
        if key not in cookies:
            return None, False
        return cookies[key], True


def path_param_value(request: Request, name: str) -> Tuple[str, bool]:
    """Read a path parameter the router stored on the ASGI scope."""
    value = request.path_params.get(name)
    if value is None or value == "":
        return "", False
    return str(value), True


class PathParser:
    """
    Path parameters.

    Args:
        value_from_path: ``(request, name) -> (value, found)``; defaults to
            the ``path_params`` entry of the ASGI scope
    """

    namespace = "path"

    def __init__(self, value_from_path: Optional[PathValueFunc] = None):
        self._value_from_path = value_from_path or path_param_value

    def parse(self, request: Request, key: str) -> Tuple[Optional[RawValue], bool]:
        return self._value_from_path(request, key)


class Parsers:
    """
    Namespace keyed set of parsers applied to a dataclass destination.

    Fields that already hold a non-zero value are left alone when
    ``skip_filled`` is set. When several parsers find a value for the same
    field, the parser registered last wins.

    Example:
        ```python
        parsers = Parsers.default()
        parsers.parse(request, search)
        ```
    """

    def __init__(
        self,
        *parsers: Parser,
        skip_filled: bool = True,
        split: bool = True,
        split_symbol: str = SPLIT_SYMBOL,
        field_cache: Optional[FieldCache] = None,
    ):
        self._parsers: Dict[str, Parser] = {}
        self._skip_filled = skip_filled
        self._options = CoercionOptions(split=split, split_symbol=split_symbol)
        self._field_cache = field_cache if field_cache is not None else FieldCache()
        for parser in parsers:
            self.register(parser)

    @classmethod
    def default(
        cls,
        *,
        value_from_path: Optional[PathValueFunc] = None,
        **options: Any,
    ) -> "Parsers":
        """Query, header, cookie and path parsers."""
        return cls(
            QueryParser(),
            HeaderParser(),
            CookieParser(),
            PathParser(value_from_path),
            **options,
        )

    @property
    def skip_filled(self) -> bool:
        return self._skip_filled

    @property
    def options(self) -> CoercionOptions:
        return self._options

    @property
    def field_cache(self) -> FieldCache:
        return self._field_cache

    def register(self, parser: Parser) -> None:
        self._parsers[parser.namespace] = parser

    def get(self, namespace: str) -> Optional[Parser]:
        return self._parsers.get(namespace)

    def parse(self, request: Request, destination: Any) -> None:
        """
        Populate the annotated fields of ``destination`` from ``request``.

        Raises:
            NotSupported: Destination is not a dataclass instance, or a
                field type cannot hold a parsed value
            ConversionError: A parsed value does not fit its field
        """
        if not dataclasses.is_dataclass(destination) or isinstance(destination, type):
            raise NotSupported(type(destination), "request values bind into dataclass instances only")

        for field in self._field_cache.fields(type(destination)):
            if self._skip_filled and not is_zero(getattr(destination, field.name, None)):
                continue

            for namespace, parser in self._parsers.items():
                key = field.tag(namespace)
                if key is None or key == SKIP:
                    continue

                raw, found = parser.parse(request, key)
                if not found:
                    continue

                logger.debug(
                    "Setting %s.%s from %s %r",
                    type(destination).__qualname__, field.name, namespace, key,
                )
                set_field(destination, field, raw, self._options)

    def __contains__(self, namespace: str) -> bool:
        return namespace in self._parsers

    def __iter__(self) -> Iterator[Parser]:
        return iter(self._parsers.values())

    def __len__(self) -> int:
        return len(self._parsers)
