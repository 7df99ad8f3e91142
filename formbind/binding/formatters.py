"""
Post-binding formatters.

A formatter annotation is a comma separated chain of operations, each
``name`` or ``name=argument`` (several arguments are separated by ``:``)::

    @dataclass
    class Search:
        email: str = bind(query="email", string="trim_space", default="")
        page: int = bind(query="page", numeric="min=1,max=100", default=1)
        tags: List[str] = bind(query="tag", slice="compact,unique,sort,limit=10", default_factory=list)
        since: Optional[datetime.datetime] = bind(query="since", time="timezone=UTC,start_of_day", default=None)

Formatters run after the body decoders and request parsers and rewrite
the field value in place. A field holding None is left alone.

Built-in operations:

- string: trim_space
- numeric: abs, round, ceil, floor (floats only), min=N, max=N
- slice: sort, sort_desc, unique, compact, limit=N
- time: timezone=Zone, truncate=hour|minute|second|<duration>,
  start_of_day, end_of_day

Each formatter accepts extra or replacement operations, so
``StringFormatter(extend={"lower": str.lower})`` adds ``lower``.
"""

from __future__ import annotations

import datetime
import logging
import re
import zoneinfo
from typing import (
    Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple,
    runtime_checkable
)

import numpy as np

from ..faults import BindingFault, ConversionError, FormatterNotFound, NotSupported
from .coercion import coerce, is_zero
from .fields import FieldCache

logger = logging.getLogger("formbind.binding.formatters")

SPLIT_SYMBOL = ","
ARGUMENT_SYMBOL = "="
MULTIPLE_ARGUMENTS_SYMBOL = ":"

FormatterFunc = Callable[[Any, str], Any]


def parse_formatter(part: str) -> Tuple[str, str]:
    """Split one ``name=argument`` operation."""
    name, sep, arg = part.partition(ARGUMENT_SYMBOL)
    return name.strip(), arg if sep else ""


def split_args(arg: str) -> List[str]:
    return arg.split(MULTIPLE_ARGUMENTS_SYMBOL)


@runtime_checkable
class Formatter(Protocol):
    namespace: str

    def format(self, value: Any, chain: str) -> Any:
        ...


class BaseFormatter:
    """
    Named operations applied in annotation order.

    Args:
        formatters: Replace the built-in operations
        extend: Add to (or override) the built-in operations
    """

    namespace: str = ""
    default_formatters: Mapping[str, FormatterFunc] = {}

    def __init__(
        self,
        formatters: Optional[Mapping[str, FormatterFunc]] = None,
        *,
        extend: Optional[Mapping[str, FormatterFunc]] = None,
    ):
        source = self.default_formatters if formatters is None else formatters
        self._formatters: Dict[str, FormatterFunc] = dict(source)
        if extend:
            self._formatters.update(extend)

    def register(self, name: str, formatter: FormatterFunc) -> None:
        self._formatters[name] = formatter

    def __contains__(self, name: str) -> bool:
        return name in self._formatters

    def check(self, value: Any) -> None:
        """Raise NotSupported when ``value`` cannot be formatted here."""

    def format(self, value: Any, chain: str) -> Any:
        """
        Apply every operation of ``chain`` to ``value``.

        Raises:
            FormatterNotFound: An operation is not registered
            NotSupported: The value type cannot be formatted
            ConversionError: An operation argument is malformed
        """
        self.check(value)

        for part in chain.split(SPLIT_SYMBOL):
            name, arg = parse_formatter(part)
            formatter = self._formatters.get(name)
            if formatter is None:
                raise FormatterNotFound(self.namespace, name)
            value = formatter(value, arg)

        return value

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({sorted(self._formatters)})"


# ============================================================================
# string
# ============================================================================

def _string_op(fn: Callable[[str], str]) -> FormatterFunc:
    return lambda value, _arg: fn(value)


class StringFormatter(BaseFormatter):
    """Operations on ``str`` fields."""

    namespace = "string"
    default_formatters = {
        "trim_space": _string_op(str.strip),
    }

    def __init__(
        self,
        formatters: Optional[Mapping[str, Callable[[str], str]]] = None,
        *,
        extend: Optional[Mapping[str, Callable[[str], str]]] = None,
    ):
        super().__init__(
            None if formatters is None else {n: _string_op(f) for n, f in formatters.items()},
            extend={n: _string_op(f) for n, f in (extend or {}).items()},
        )

    def check(self, value: Any) -> None:
        if not isinstance(value, str):
            raise NotSupported(type(value), "string formatter")

    def register(self, name: str, formatter: Callable[[str], str]) -> None:
        super().register(name, _string_op(formatter))


# ============================================================================
# numeric
# ============================================================================

_INTEGER_TYPES = (int, np.signedinteger, np.unsignedinteger)
_FLOAT_TYPES = (float, np.floating)


def _require_float(value: Any, name: str) -> None:
    if not isinstance(value, _FLOAT_TYPES):
        raise NotSupported(type(value), f"{name} formatter")


def _abs(value: Any, _arg: str) -> Any:
    return type(value)(abs(value))


def _round(value: Any, _arg: str) -> Any:
    _require_float(value, "round")
    # Halves round away from zero
    whole = np.trunc(value)
    if abs(value - whole) >= 0.5:
        whole += np.copysign(1.0, value)
    return type(value)(whole)


def _ceil(value: Any, _arg: str) -> Any:
    _require_float(value, "ceil")
    return type(value)(np.ceil(value))


def _floor(value: Any, _arg: str) -> Any:
    _require_float(value, "floor")
    return type(value)(np.floor(value))


def _bound(value: Any, arg: str, name: str) -> Any:
    if arg == "":
        raise ConversionError(arg, type(value), f"{name} needs a value")
    return coerce(type(value), arg)


def _min(value: Any, arg: str) -> Any:
    bound = _bound(value, arg, "min")
    return bound if value < bound else value


def _max(value: Any, arg: str) -> Any:
    bound = _bound(value, arg, "max")
    return bound if value > bound else value


class NumericFormatter(BaseFormatter):
    """Operations on integer and floating point fields."""

    namespace = "numeric"
    default_formatters = {
        "abs": _abs,
        "round": _round,
        "ceil": _ceil,
        "floor": _floor,
        "min": _min,
        "max": _max,
    }

    def check(self, value: Any) -> None:
        if isinstance(value, (bool, np.bool_)) or not isinstance(value, _INTEGER_TYPES + _FLOAT_TYPES):
            raise NotSupported(type(value), "numeric formatter")


# ============================================================================
# slice
# ============================================================================

def _sort(value: List[Any], _arg: str, reverse: bool = False) -> List[Any]:
    try:
        return sorted(value, reverse=reverse)
    except TypeError as exc:
        raise NotSupported(List[Any], f"sort formatter: {exc}") from exc


def _unique(value: List[Any], _arg: str) -> List[Any]:
    result: List[Any] = []
    seen = set()
    for item in value:
        try:
            if item in seen:
                continue
            seen.add(item)
        except TypeError:
            if item in result:
                continue
        result.append(item)
    return result


def _compact(value: List[Any], _arg: str) -> List[Any]:
    return [item for item in value if not is_zero(item)]


def _limit(value: List[Any], arg: str) -> List[Any]:
    try:
        limit = int(arg)
    except ValueError:
        raise ConversionError(arg, int, "invalid limit") from None
    return value[:max(limit, 0)]


class SliceFormatter(BaseFormatter):
    """Operations on list fields; every operation returns a new list."""

    namespace = "slice"
    default_formatters = {
        "sort": _sort,
        "sort_desc": lambda value, arg: _sort(value, arg, reverse=True),
        "unique": _unique,
        "compact": _compact,
        "limit": _limit,
    }

    def check(self, value: Any) -> None:
        if not isinstance(value, list):
            raise NotSupported(type(value), "slice formatter")


# ============================================================================
# time
# ============================================================================

_ZERO_TIME = datetime.datetime(1, 1, 1)

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_NAMES = {
    "hour": datetime.timedelta(hours=1),
    "minute": datetime.timedelta(minutes=1),
    "second": datetime.timedelta(seconds=1),
}

_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> datetime.timedelta:
    """
    Parse ``hour``/``minute``/``second`` or a duration such as ``1h30m``,
    ``15m`` or ``1.5s``.

    Raises:
        ConversionError: The text is not a duration
    """
    if text in _DURATION_NAMES:
        return _DURATION_NAMES[text]

    body = text
    sign = 1
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]

    if body == "0":
        return datetime.timedelta(0)

    seconds = 0.0
    position = 0
    while position < len(body):
        match = _DURATION_PART.match(body, position)
        if match is None:
            raise ConversionError(text, datetime.timedelta, "invalid duration")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0:
        raise ConversionError(text, datetime.timedelta, "invalid duration")

    return datetime.timedelta(seconds=sign * seconds)


def _as_aware(value: datetime.datetime) -> datetime.datetime:
    # Naive values are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def _timezone(value: datetime.datetime, arg: str) -> datetime.datetime:
    if arg in ("", "UTC"):
        return _as_aware(value).astimezone(datetime.timezone.utc)

    try:
        zone = zoneinfo.ZoneInfo(arg)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError) as exc:
        raise ConversionError(arg, zoneinfo.ZoneInfo, "invalid timezone") from exc
    return _as_aware(value).astimezone(zone)


def _truncate(value: datetime.datetime, arg: str) -> datetime.datetime:
    step = parse_duration(arg)
    if step <= datetime.timedelta(0):
        return value

    # Multiples are counted from the zero time in UTC, whatever the zone
    if value.tzinfo is None:
        elapsed = value - _ZERO_TIME
    else:
        elapsed = value.astimezone(datetime.timezone.utc).replace(tzinfo=None) - _ZERO_TIME
    return value - elapsed % step


def _start_of_day(value: datetime.datetime, _arg: str) -> datetime.datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _end_of_day(value: datetime.datetime, _arg: str) -> datetime.datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)


class TimeFormatter(BaseFormatter):
    """Operations on ``datetime.datetime`` fields."""

    namespace = "time"
    default_formatters = {
        "timezone": _timezone,
        "truncate": _truncate,
        "start_of_day": _start_of_day,
        "end_of_day": _end_of_day,
    }

    def check(self, value: Any) -> None:
        if not isinstance(value, datetime.datetime):
            raise NotSupported(type(value), "time formatter")


# ============================================================================
# Registry
# ============================================================================

class Formatters:
    """
    Namespace keyed set of formatters applied to a dataclass destination.

    Example:
        ```python
        formatters = Formatters.default()
        formatters.format(search)
        ```
    """

    def __init__(self, *formatters: Formatter, field_cache: Optional[FieldCache] = None):
        self._formatters: Dict[str, Formatter] = {}
        self._field_cache = field_cache if field_cache is not None else FieldCache()
        for formatter in formatters:
            self.register(formatter)

    @classmethod
    def default(cls, *, field_cache: Optional[FieldCache] = None) -> "Formatters":
        return cls(
            StringFormatter(),
            NumericFormatter(),
            SliceFormatter(),
            TimeFormatter(),
            field_cache=field_cache,
        )

    @property
    def field_cache(self) -> FieldCache:
        return self._field_cache

    def register(self, formatter: Formatter) -> None:
        self._formatters[formatter.namespace] = formatter

    def get(self, namespace: str) -> Optional[Formatter]:
        return self._formatters.get(namespace)

    def format(self, destination: Any) -> None:
        """
        Rewrite the formatter-annotated fields of ``destination``.

        Raises:
            FormatterNotFound: An annotation names an unknown operation
                or a namespace without a registered formatter
            NotSupported: A field type cannot be formatted
            ConversionError: An operation argument is malformed
        """
        for field in self._field_cache.fields(type(destination)):
            for namespace, chain in field.tags.items():
                if namespace in field.decoders:
                    continue

                formatter = self._formatters.get(namespace)
                if formatter is None:
                    raise FormatterNotFound(namespace, chain).with_field(field.name)

                value = getattr(destination, field.name)
                if value is None:
                    continue

                logger.debug(
                    "Formatting %s.%s with %s %r",
                    type(destination).__qualname__, field.name, namespace, chain,
                )
                try:
                    value = formatter.format(value, chain)
                except BindingFault as fault:
                    raise fault.with_field(field.name)
                setattr(destination, field.name, value)

    def __contains__(self, namespace: str) -> bool:
        return namespace in self._formatters

    def __iter__(self) -> Iterator[Formatter]:
        return iter(self._formatters.values())

    def __len__(self) -> int:
        return len(self._formatters)
