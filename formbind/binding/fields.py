"""
Field metadata cache.

Derives, once per destination type, the ordered list of fields that take
part in binding together with their per-source annotations. Annotations
live in ``dataclasses.field(metadata=...)`` keyed by namespace::

    @dataclass
    class Search:
        query: str = bind(form="q", query="q", string="trim_space", default="")
        page: int = bind(query="page", numeric="min=1", default=1)
        tags: List[str] = bind(form="tags", slice="unique", default_factory=list)
        avatar: Optional[MultipartFile] = bind(multipart="avatar", default=None)

Source namespaces name where a value comes from (a body decoder or a
request parser). Formatter namespaces (``string``, ``numeric``, ``slice``,
``time``) post-process the bound value and are only recorded for fields
that have at least one source.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import MISSING, dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, get_type_hints

logger = logging.getLogger("formbind.binding.fields")

# Reserved annotation values
ALL_FILES = ",allfiles"
SKIP = "-"

BODY_NAMESPACES: Tuple[str, ...] = ("form", "multipart", "json", "xml")
REQUEST_NAMESPACES: Tuple[str, ...] = ("query", "header", "cookie", "path")
DEFAULT_NAMESPACES: Tuple[str, ...] = BODY_NAMESPACES + REQUEST_NAMESPACES
FORMATTER_NAMESPACES: Tuple[str, ...] = ("string", "numeric", "slice", "time")


@dataclass(frozen=True)
class FieldMetadata:
    """Precomputed description of one bindable field."""

    index: int
    name: str
    type: Any
    tags: Mapping[str, str] = field(default_factory=dict)
    decoders: Tuple[str, ...] = ()
    exported: bool = True

    def tag(self, namespace: str) -> Optional[str]:
        return self.tags.get(namespace)


def bind(
    *,
    form: Optional[str] = None,
    multipart: Optional[str] = None,
    json: Optional[str] = None,
    xml: Optional[str] = None,
    query: Optional[str] = None,
    header: Optional[str] = None,
    cookie: Optional[str] = None,
    path: Optional[str] = None,
    default: Any = MISSING,
    default_factory: Any = MISSING,
    **extra: str,
) -> Any:
    """
    Declare a dataclass field with binding annotations.

    Each source keyword names the key to read for that namespace; extra
    keywords (formatter specs such as ``string="trim_space,lower"``) are
    stored as is. Defaults behave exactly as in ``dataclasses.field``:
    without ``default`` or ``default_factory`` the field is a required
    constructor argument.
    """
    tags = {
        "form": form, "multipart": multipart, "json": json, "xml": xml,
        "query": query, "header": header, "cookie": cookie, "path": path,
        **extra,
    }
    metadata = {name: value for name, value in tags.items() if value is not None}

    return dataclasses.field(default=default, default_factory=default_factory, metadata=metadata)


class FieldCache:
    """
    Per-type cache of bindable field metadata.

    Safe for concurrent use: lookups read a plain dict, derivation happens
    outside the lock and insertion keeps the first stored tuple, so racing
    callers for a new type all end up with the same cached value.
    """

    def __init__(self, namespaces: Iterable[str] = DEFAULT_NAMESPACES):
        self.namespaces: Tuple[str, ...] = tuple(namespaces)
        self._cache: Dict[type, Tuple[FieldMetadata, ...]] = {}
        self._lock = threading.Lock()

    def fields(self, record_type: type) -> Tuple[FieldMetadata, ...]:
        """Return the bindable fields of ``record_type``, deriving them on first use."""
        cached = self._cache.get(record_type)
        if cached is not None:
            return cached

        derived = self._analyze(record_type)

        with self._lock:
            return self._cache.setdefault(record_type, derived)

    def __contains__(self, record_type: type) -> bool:
        return record_type in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def _analyze(self, record_type: type) -> Tuple[FieldMetadata, ...]:
        if not (isinstance(record_type, type) and dataclasses.is_dataclass(record_type)):
            return ()

        try:
            hints = get_type_hints(record_type, include_extras=True)
        except (NameError, TypeError) as exc:
            logger.debug(
                "Resolving %s field by field: %s", record_type.__qualname__, exc,
            )
            hints = None

        result = []

        for index, f in enumerate(dataclasses.fields(record_type)):
            if f.name.startswith("_"):
                continue

            sources = tuple(ns for ns in self.namespaces if ns in f.metadata)
            if not sources:
                continue

            tags = {ns: f.metadata[ns] for ns in sources}
            tags.update({ns: f.metadata[ns] for ns in FORMATTER_NAMESPACES if ns in f.metadata})

            if hints is not None:
                field_type = hints.get(f.name, f.type)
            else:
                field_type = _resolve_field_type(record_type, f)

            result.append(FieldMetadata(
                index=index,
                name=f.name,
                type=field_type,
                tags=tags,
                decoders=sources,
            ))

        logger.debug(
            "Derived %d bindable fields for %s", len(result), record_type.__qualname__,
        )
        return tuple(result)


def _resolve_field_type(record_type: type, f: dataclasses.Field) -> Any:
    """
    Resolve one field annotation in the record's module namespace.

    Annotations that still cannot be resolved (e.g. references to classes
    local to a function) stay as written; binding such a field raises
    NotSupported.
    """
    holder = type(f.name, (), {
        "__annotations__": {f.name: f.type},
        "__module__": record_type.__module__,
    })
    try:
        return get_type_hints(holder, include_extras=True)[f.name]
    except (NameError, TypeError):
        return f.type
