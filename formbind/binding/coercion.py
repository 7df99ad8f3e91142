"""
Type-directed value coercion.

Converts a raw wire value (a string, a list of strings, or an already
typed JSON/XML value) into the declared type of a destination field.

Supported destinations:
- str, bool, int, float, complex and the numpy fixed-width scalars
- Optional[T] (coerces into T)
- List[T] / Sequence[T] of any supported scalar T
- bytes, Decimal, UUID, Enum, datetime, date
- any class implementing the TextParsable protocol (e.g. URL)
- Any / object (value stored as received)

Everything else raises NotSupported.
"""

from __future__ import annotations

import collections.abc
import dataclasses
import datetime
import decimal
import enum
import math
import types
import uuid
from dataclasses import dataclass
from typing import (
    Annotated, Any, Dict, List, MutableMapping, Optional, Protocol, Tuple,
    Union, get_args, get_origin, runtime_checkable
)

import numpy as np

from .._datastructures import MultiDict
from ..faults import BindingFault, ConversionError, NotSupported
from .fields import FieldMetadata


# ============================================================================
# Options & Capabilities
# ============================================================================

@dataclass(frozen=True)
class CoercionOptions:
    """
    Decoder-level knobs for list handling.

    Attributes:
        split: Split a single delimited value into a sequence destination
        split_symbol: Delimiter used for splitting and joining
    """
    split: bool = True
    split_symbol: str = ","


DEFAULT_OPTIONS = CoercionOptions()


@runtime_checkable
class TextParsable(Protocol):
    """Types that build themselves from a single string."""

    @classmethod
    def parse(cls, text: str) -> Any:
        ...


# ============================================================================
# Type tables
# ============================================================================

_TRUE = frozenset({"1", "t", "true", "yes", "y", "on"})
_FALSE = frozenset({"0", "f", "false", "no", "n", "off"})

_NP_INTEGERS = (np.int8, np.int16, np.int32, np.int64, np.uint8, np.uint16, np.uint32, np.uint64)
_NP_FLOATS = (np.float32, np.float64)
_NP_COMPLEX = (np.complex64, np.complex128)

_SEQUENCE_ORIGINS = (list, collections.abc.Sequence, collections.abc.MutableSequence)

_DATETIME_LAYOUTS = (
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S%z",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%a, %d %b %Y %H:%M:%S %z",
    "%d %b %y %H:%M %Z",
    "%d %b %y %H:%M %z",
    "%A, %d-%b-%y %H:%M:%S %Z",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
)


def unwrap(tp: Any) -> Any:
    """Strip Annotated[...] and NewType layers."""
    while True:
        if get_origin(tp) is Annotated:
            tp = get_args(tp)[0]
            continue
        supertype = getattr(tp, "__supertype__", None)
        if supertype is not None:
            tp = supertype
            continue
        return tp


def optional_inner(tp: Any) -> Optional[Any]:
    """Return T for Optional[T], None for anything else."""
    if get_origin(tp) in (Union, types.UnionType):
        args = get_args(tp)
        rest = [a for a in args if a is not type(None)]
        if len(args) == 2 and len(rest) == 1:
            return rest[0]
    return None


def is_zero(value: Any) -> bool:
    """True for None, False, zero numbers and empty strings/collections."""
    return value is None or not value


def is_sequence_type(tp: Any) -> bool:
    """True for List[T], Sequence[T] and bare list, also behind Optional."""
    tp = unwrap(tp)
    inner = optional_inner(tp)
    if inner is not None:
        tp = unwrap(inner)
    return tp is list or get_origin(tp) in _SEQUENCE_ORIGINS


def _is_string_list(tp: Any) -> bool:
    tp = unwrap(tp)
    if get_origin(tp) not in _SEQUENCE_ORIGINS:
        return False
    args = get_args(tp)
    return bool(args) and unwrap(args[0]) is str


def _is_file_type(tp: Any) -> bool:
    # Imported lazily: files.py depends on this module
    from .files import MultipartFile, MultipartFiles
    return isinstance(tp, type) and issubclass(tp, (MultipartFile, MultipartFiles))


# ============================================================================
# Numeric fitting
# ============================================================================

def _fit_integer(tp: Any, number: int, source: Any) -> Any:
    if tp is int:
        return number

    info = np.iinfo(tp)
    if not info.min <= number <= info.max:
        raise ConversionError(source, tp, f"out of range [{info.min}, {info.max}]")
    return tp(number)


def _fit_float(tp: Any, number: float, source: Any) -> Any:
    if tp is float:
        return number

    with np.errstate(over="ignore"):
        result = tp(number)
    if math.isfinite(number) and np.isinf(result):
        raise ConversionError(source, tp, "value out of range")
    return result


def _fit_complex(tp: Any, number: complex, source: Any) -> Any:
    if tp is complex:
        return number

    with np.errstate(over="ignore"):
        result = tp(number)
    for wide, narrow in ((number.real, result.real), (number.imag, result.imag)):
        if math.isfinite(wide) and np.isinf(narrow):
            raise ConversionError(source, tp, "value out of range")
    return result


# ============================================================================
# String parsing
# ============================================================================

def _parse_bool(tp: Any, text: str) -> Any:
    lowered = text.lower()
    if lowered in _TRUE:
        return tp(True)
    if lowered in _FALSE or lowered == "":
        return tp(False)
    raise ConversionError(text, tp)


def _parse_int(tp: Any, text: str) -> Any:
    if text == "":
        return tp(0)

    digits = text.lstrip("+-").lower()
    base = 0 if digits.startswith(("0x", "0o", "0b")) else 10

    try:
        number = int(text, base)
    except ValueError as exc:
        raise ConversionError(text, tp, str(exc)) from exc

    return _fit_integer(tp, number, text)


def _parse_float(tp: Any, text: str) -> Any:
    if text == "":
        return tp(0.0)

    try:
        number = float(text)
    except ValueError as exc:
        raise ConversionError(text, tp, str(exc)) from exc

    return _fit_float(tp, number, text)


def _parse_complex(tp: Any, text: str) -> Any:
    if text == "":
        return tp(0j)

    body = text.strip()
    if body.startswith("(") and body.endswith(")"):
        body = body[1:-1]
    # Accept the "i" imaginary suffix as well as Python's "j"
    if body.endswith("i") and not body.lower().endswith("inf"):
        body = body[:-1] + "j"

    try:
        number = complex(body)
    except ValueError as exc:
        raise ConversionError(text, tp, str(exc)) from exc

    return _fit_complex(tp, number, text)


def _parse_enum(tp: Any, text: str) -> Any:
    for member in tp:
        if str(member.value) == text:
            return member
    try:
        return tp[text]
    except KeyError:
        raise ConversionError(text, tp, f"expected one of {[str(m.value) for m in tp]}") from None


def _parse_datetime(text: str) -> datetime.datetime:
    candidate = text.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"

    try:
        return datetime.datetime.fromisoformat(candidate)
    except ValueError:
        pass

    for layout in _DATETIME_LAYOUTS:
        try:
            return datetime.datetime.strptime(text, layout)
        except ValueError:
            continue

    raise ConversionError(text, datetime.datetime, "no known layout matches")


def _parse_date(text: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(text.strip())
    except ValueError:
        pass

    try:
        return datetime.datetime.strptime(text, "%m/%d/%Y").date()
    except ValueError:
        raise ConversionError(text, datetime.date, "no known layout matches") from None


def _from_string(tp: Any, text: str) -> Any:
    if isinstance(tp, type) and issubclass(tp, enum.Enum):
        return _parse_enum(tp, text)

    if tp is str:
        return text

    if tp is bool or tp is np.bool_:
        return _parse_bool(tp, text)

    if tp is int or tp in _NP_INTEGERS:
        return _parse_int(tp, text)

    if tp is float or tp in _NP_FLOATS:
        return _parse_float(tp, text)

    if tp is complex or tp in _NP_COMPLEX:
        return _parse_complex(tp, text)

    if tp is bytes:
        return text.encode("utf-8")

    if tp is decimal.Decimal:
        if text == "":
            return decimal.Decimal(0)
        try:
            return decimal.Decimal(text)
        except decimal.InvalidOperation:
            raise ConversionError(text, tp) from None

    if tp is uuid.UUID:
        try:
            return uuid.UUID(text)
        except ValueError as exc:
            raise ConversionError(text, tp, str(exc)) from exc

    # datetime is a date subclass; check it first
    if tp is datetime.datetime:
        return _parse_datetime(text)

    if tp is datetime.date:
        return _parse_date(text)

    if not isinstance(tp, type):
        raise NotSupported(tp)

    if issubclass(tp, np.generic):
        raise NotSupported(tp, "unsupported numeric width")

    if issubclass(tp, str):
        return tp(text)

    if issubclass(tp, TextParsable):
        try:
            return tp.parse(text)
        except BindingFault:
            raise
        except Exception as exc:
            raise ConversionError(text, tp, str(exc)) from exc

    raise NotSupported(tp)


# ============================================================================
# Typed values (JSON / XML payloads)
# ============================================================================

def _from_value(tp: Any, value: Any) -> Any:
    if isinstance(value, bool):
        if tp is bool or tp is np.bool_:
            return tp(value)
        raise ConversionError(value, tp)

    if isinstance(value, int):
        if tp is int or tp in _NP_INTEGERS:
            return _fit_integer(tp, value, value)
        if tp is float or tp in _NP_FLOATS:
            return _fit_float(tp, float(value), value)
        if tp is complex or tp in _NP_COMPLEX:
            return _fit_complex(tp, complex(value), value)
        if tp is decimal.Decimal:
            return decimal.Decimal(value)

    if isinstance(value, float):
        if tp is float or tp in _NP_FLOATS:
            return _fit_float(tp, value, value)
        if tp is complex or tp in _NP_COMPLEX:
            return _fit_complex(tp, complex(value), value)
        if tp is decimal.Decimal:
            return decimal.Decimal(str(value))

    if isinstance(tp, type) and not dataclasses.is_dataclass(tp) and isinstance(value, tp):
        return value

    if isinstance(tp, type) and issubclass(tp, np.generic) and tp not in (
        _NP_INTEGERS + _NP_FLOATS + _NP_COMPLEX + (np.bool_,)
    ):
        raise NotSupported(tp, "unsupported numeric width")

    raise ConversionError(value, tp)


# ============================================================================
# Sequences
# ============================================================================

def _coerce_sequence(tp: Any, raw: Any, options: CoercionOptions) -> List[Any]:
    args = get_args(tp)
    item_type = args[0] if args else Any

    if isinstance(raw, list):
        items = raw
    elif isinstance(raw, str):
        if not options.split:
            raise NotSupported(tp, "splitting a single value into a sequence is disabled")
        items = [part.strip() for part in raw.split(options.split_symbol)]
        items = [part for part in items if part]
    else:
        raise ConversionError(raw, tp)

    return [coerce(item_type, item, options) for item in items]


# ============================================================================
# Public API
# ============================================================================

def coerce(target_type: Any, raw: Any, options: CoercionOptions = DEFAULT_OPTIONS) -> Any:
    """
    Convert ``raw`` into a value of ``target_type``.

    Args:
        target_type: Declared destination type (typing constructs allowed)
        raw: str, list of str, or a typed JSON/XML value
        options: Split configuration of the calling decoder

    Returns:
        A freshly built value; ``raw`` is never mutated

    Raises:
        ConversionError: The value does not fit the destination type
        NotSupported: The destination type cannot be bound
    """
    tp = unwrap(target_type)

    if tp is Any or tp is object:
        return list(raw) if isinstance(raw, list) else raw

    origin = get_origin(tp)

    if origin in (Union, types.UnionType):
        inner = optional_inner(tp)
        if inner is None:
            raise NotSupported(tp, "only Optional[...] unions can be bound")
        if raw is None:
            return None
        return coerce(inner, raw, options)

    if raw is None:
        raise ConversionError(raw, tp)

    if _is_file_type(tp):
        raise NotSupported(tp, "uploaded files bind through the multipart decoder only")

    if origin in _SEQUENCE_ORIGINS or tp is list:
        return _coerce_sequence(tp, raw, options)

    if origin is not None:
        raise NotSupported(tp)

    if isinstance(raw, list):
        if tp is str:
            if not raw:
                return ""
            return options.split_symbol.join(raw) if options.split else raw[0]
        raise NotSupported(tp, "several values for a single-value destination")

    if isinstance(raw, str):
        return _from_string(tp, raw)

    return _from_value(tp, raw)


def set_field(
    record: Any,
    field: FieldMetadata,
    raw: Any,
    options: CoercionOptions = DEFAULT_OPTIONS,
) -> None:
    """Coerce ``raw`` into ``field`` of ``record`` and assign it in place."""
    try:
        value = coerce(field.type, raw, options)
    except BindingFault as fault:
        raise fault.with_field(field.name)

    setattr(record, field.name, value)


# ============================================================================
# Mapping destinations
# ============================================================================

def mapping_item_types(mapping: Any) -> Tuple[Any, Any]:
    """
    Key and value types of a mapping destination.

    Plain dicts are treated as Dict[str, Any]; dict subclasses declared as
    ``class Params(Dict[str, List[str]])`` report their parameters.
    """
    for base in getattr(type(mapping), "__orig_bases__", ()):
        origin = get_origin(base)
        if isinstance(origin, type) and issubclass(origin, collections.abc.Mapping):
            args = get_args(base)
            if len(args) == 2:
                return args[0], args[1]
    return str, Any


def bind_mapping(
    destination: MutableMapping[str, Any],
    form: MultiDict,
    options: CoercionOptions = DEFAULT_OPTIONS,
    *,
    skip_filled: bool = True,
) -> None:
    """
    Populate a string-keyed mapping from every entry of a parsed form.

    Value types:
        str: multi-valued entries joined with the split symbol (first
             value when splitting is disabled)
        Any: single values as str, multi-valued entries as lists
        List[str]: the form copied verbatim

    Raises:
        NotSupported: Non-string keys or any other value type
    """
    key_type, value_type = mapping_item_types(destination)
    if unwrap(key_type) is not str:
        raise NotSupported(Dict[key_type, value_type], "mapping keys must be strings")

    vt = unwrap(value_type)
    if vt is str:
        def build(values: List[str]) -> Any:
            if len(values) == 1 or not options.split:
                return values[0]
            return options.split_symbol.join(values)
    elif vt is Any or vt is object:
        def build(values: List[str]) -> Any:
            return values[0] if len(values) == 1 else list(values)
    elif _is_string_list(vt):
        build = list
    else:
        raise NotSupported(Dict[str, value_type], "mapping values must be str, Any or List[str]")

    for key, values in form.items():
        if not values:
            continue
        if skip_filled and not is_zero(destination.get(key)):
            continue
        destination[key] = build(values)
