"""
Content decoders.

Each decoder answers to one Content-Type and populates a destination
(dataclass instance or string-keyed mapping) from a request:

- FormURLDecoder: application/x-www-form-urlencoded, ``form`` annotations
- MultipartDecoder: multipart/form-data, ``multipart`` annotations
- JSONDecoder: application/json, ``json`` annotations
- XMLDecoder: application/xml, ``xml`` annotations

Decoders only hold configuration, so one instance can serve any number
of concurrent requests. ``Decoders`` picks the decoder for a request by
its media type.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import (
    Any, Dict, Iterator, List, MutableMapping, Optional, Protocol, Tuple,
    get_args, runtime_checkable
)
from xml.etree import ElementTree

from .._datastructures import ParsedContentType
from .._uploads import FormData
from ..faults import BindingFault, ConversionError, NotSupported, TransportParseError
from ..request import Request, RequestFault
from .coercion import (
    CoercionOptions, bind_mapping, coerce, is_sequence_type, is_zero,
    mapping_item_types, optional_inner, set_field, unwrap
)
from .extract import lookup
from .fields import ALL_FILES, SKIP, FieldCache, FieldMetadata
from .files import ensure_file_destination, open_all_files, open_file

logger = logging.getLogger("formbind.binding.decoders")

CONTENT_TYPE_FORM_URL = "application/x-www-form-urlencoded"
CONTENT_TYPE_MULTIPART = "multipart/form-data"
CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_XML = "application/xml"

SPLIT_SYMBOL = ","
DEFAULT_MAX_MEMORY = 32 << 20  # 32 MiB


@runtime_checkable
class Decoder(Protocol):
    """What a request-body decoder exposes to the dispatcher."""

    @property
    def content_type(self) -> str:
        ...

    async def decode(self, request: Request, destination: Any) -> None:
        ...


def _is_record(destination: Any) -> bool:
    return dataclasses.is_dataclass(destination) and not isinstance(destination, type)


def _record_type(tp: Any) -> Optional[type]:
    """The dataclass behind ``tp`` (looking through Optional), if any."""
    tp = unwrap(tp)
    inner = optional_inner(tp)
    if inner is not None:
        tp = unwrap(inner)
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        return tp
    return None


def _accepts_null(tp: Any) -> bool:
    """True for Optional[...] and Any, the only types a JSON null binds to."""
    tp = unwrap(tp)
    return tp is Any or tp is object or optional_inner(tp) is not None


def _new_record(record_type: type) -> Any:
    try:
        return record_type()
    except TypeError as exc:
        raise NotSupported(record_type, f"nested records need a default for every field ({exc})") from exc


# ============================================================================
# Base
# ============================================================================

class BaseDecoder:
    """
    Shared configuration and per-field plumbing.

    Args:
        content_type: Override the advertised Content-Type
        skip_filled: Leave fields that already hold a non-zero value alone
        split: Split single delimited values into sequence destinations
        split_symbol: Delimiter for splitting and joining
        field_cache: Field metadata cache, shared between decoders if given
    """

    namespace: str = ""
    default_content_type: str = ""

    def __init__(
        self,
        *,
        content_type: Optional[str] = None,
        skip_filled: bool = True,
        split: bool = True,
        split_symbol: str = SPLIT_SYMBOL,
        field_cache: Optional[FieldCache] = None,
    ):
        self._content_type = content_type or self.default_content_type
        self._skip_filled = skip_filled
        self._options = CoercionOptions(split=split, split_symbol=split_symbol)
        self._field_cache = field_cache if field_cache is not None else FieldCache()

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def skip_filled(self) -> bool:
        return self._skip_filled

    @property
    def options(self) -> CoercionOptions:
        return self._options

    @property
    def field_cache(self) -> FieldCache:
        return self._field_cache

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(content_type={self._content_type!r}, "
            f"skip_filled={self._skip_filled}, split={self._options.split}, "
            f"split_symbol={self._options.split_symbol!r})"
        )

    def _bound_fields(self, record: Any) -> Iterator[Tuple[FieldMetadata, str]]:
        """Fields of ``record`` annotated for this decoder, with their keys."""
        for field in self._field_cache.fields(type(record)):
            key = field.tag(self.namespace)
            if key is None or key == SKIP:
                continue
            yield field, key

    def _filled(self, record: Any, field: FieldMetadata) -> bool:
        if not self._skip_filled:
            return False
        if is_zero(getattr(record, field.name, None)):
            return False
        logger.debug(
            "Skipping filled field %s.%s", type(record).__qualname__, field.name,
        )
        return True

    def _assign(self, record: Any, field: FieldMetadata, raw: Any) -> None:
        if self._filled(record, field):
            return
        set_field(record, field, raw, self._options)


# ============================================================================
# application/x-www-form-urlencoded
# ============================================================================

class FormURLDecoder(BaseDecoder):
    """
    Decoder for url-encoded form bodies.

    Example:
        ```python
        @dataclass
        class Search:
            query: str = bind(form="q", default="")
            page: int = bind(form="page", default=1)
            tags: List[str] = bind(form="tags", default_factory=list)

        await FormURLDecoder().decode(request, search)
        ```
    """

    namespace = "form"
    default_content_type = CONTENT_TYPE_FORM_URL

    async def decode(self, request: Request, destination: Any) -> None:
        """
        Populate ``destination`` from the request's url-encoded body.

        Raises:
            NotSupported: Destination is neither a dataclass nor a mapping
            TransportParseError: The form body could not be parsed
            ConversionError: A value does not fit its field
        """
        if not (_is_record(destination) or isinstance(destination, MutableMapping)):
            raise NotSupported(type(destination), "destination must be a dataclass instance or a mapping")

        try:
            form = await request.form()
        except RequestFault as exc:
            raise TransportParseError(self._content_type, exc) from exc

        if isinstance(destination, MutableMapping):
            bind_mapping(destination, form.fields, self._options, skip_filled=self._skip_filled)
            return

        for field, key in self._bound_fields(destination):
            raw, found = lookup(form.fields, key)
            if not found:
                continue
            self._assign(destination, field, raw)


# ============================================================================
# multipart/form-data
# ============================================================================

class MultipartDecoder(BaseDecoder):
    """
    Decoder for multipart bodies: plain fields and uploaded files.

    Plain form values take precedence over file parts with the same key.
    The annotation ``ALL_FILES`` collects one handle per uploaded key.

    Example:
        ```python
        @dataclass
        class Upload:
            title: str = bind(multipart="title", default="")
            avatar: Optional[MultipartFile] = bind(multipart="avatar", default=None)
            everything: MultipartFiles = bind(multipart=ALL_FILES, default_factory=MultipartFiles)
        ```

    Args:
        max_memory: Per-file size above which uploads spill to temp files
    """

    namespace = "multipart"
    default_content_type = CONTENT_TYPE_MULTIPART

    def __init__(self, *, max_memory: int = DEFAULT_MAX_MEMORY, **options: Any):
        super().__init__(**options)
        self._max_memory = max_memory

    @property
    def max_memory(self) -> int:
        return self._max_memory

    async def decode(self, request: Request, destination: Any) -> None:
        """
        Populate ``destination`` from the request's multipart body.

        Nothing is written to ``destination`` unless the body parses.

        Raises:
            NotSupported: Destination is not a dataclass instance, or a
                file cannot be held by its field
            TransportParseError: The multipart body could not be parsed
            ConversionError: A plain value does not fit its field
            FileOpenError: A listed upload could not be opened
        """
        if not _is_record(destination):
            raise NotSupported(type(destination), "multipart binds into dataclass instances only")

        try:
            form = await request.multipart(max_memory=self._max_memory)
        except RequestFault as exc:
            raise TransportParseError(self._content_type, exc) from exc

        for field, key in self._bound_fields(destination):
            if key != ALL_FILES:
                raw, found = lookup(form.fields, key)
                if found:
                    self._assign(destination, field, raw)
                    continue

            try:
                self._bind_files(destination, field, key, form)
            except BindingFault as fault:
                raise fault.with_field(field.name)

    def _bind_files(self, record: Any, field: FieldMetadata, key: str, form: FormData) -> None:
        if key == ALL_FILES:
            if not form.files or self._filled(record, field):
                return
            ensure_file_destination(field, collection=True)
            setattr(record, field.name, open_all_files(form))
            return

        if key not in form.files or self._filled(record, field):
            return

        ensure_file_destination(field, collection=False)
        setattr(record, field.name, open_file(form, key))


# ============================================================================
# application/json
# ============================================================================

class JSONDecoder(BaseDecoder):
    """
    Decoder for JSON bodies.

    Top-level object keys bind to ``json`` annotations. Nested dataclass
    fields (and lists of them) are bound recursively; nested records must
    be constructible without arguments. A null leaves fields that are
    neither Optional nor Any untouched. An empty body is a no-op.
    """

    namespace = "json"
    default_content_type = CONTENT_TYPE_JSON

    async def decode(self, request: Request, destination: Any) -> None:
        if not (_is_record(destination) or isinstance(destination, MutableMapping)):
            raise NotSupported(type(destination), "destination must be a dataclass instance or a mapping")

        try:
            if not (await request.body()).strip():
                return
            payload = await request.json()
        except RequestFault as exc:
            raise TransportParseError(self._content_type, exc) from exc

        if isinstance(destination, MutableMapping):
            self._bind_mapping(destination, payload)
        else:
            self._bind_object(destination, payload)

    def _bind_mapping(self, destination: MutableMapping[str, Any], payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ConversionError(payload, type(destination), "expected a JSON object")

        key_type, value_type = mapping_item_types(destination)
        if unwrap(key_type) is not str:
            raise NotSupported(Dict[key_type, value_type], "mapping keys must be strings")

        for key, value in payload.items():
            if value is None and not _accepts_null(value_type):
                continue
            if self._skip_filled and not is_zero(destination.get(key)):
                continue
            try:
                destination[key] = coerce(value_type, value, self._options)
            except BindingFault as fault:
                raise fault.with_field(key)

    def _bind_object(self, record: Any, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ConversionError(payload, type(record), "expected a JSON object")

        for field, key in self._bound_fields(record):
            if key not in payload:
                continue
            value = payload[key]

            try:
                self._bind_value(record, field, value)
            except BindingFault as fault:
                raise fault.with_field(field.name)

    def _bind_value(self, record: Any, field: FieldMetadata, value: Any) -> None:
        if value is None and not _accepts_null(field.type):
            return

        nested = _record_type(field.type)
        if nested is not None and value is not None:
            current = getattr(record, field.name, None)
            if not isinstance(current, nested):
                current = _new_record(nested)
            self._bind_object(current, value)
            setattr(record, field.name, current)
            return

        if is_sequence_type(field.type) and isinstance(value, list):
            args = get_args(unwrap(optional_inner(unwrap(field.type)) or field.type))
            item_record = _record_type(args[0]) if args else None
            if item_record is not None:
                if self._filled(record, field):
                    return
                items = []
                for item in value:
                    built = _new_record(item_record)
                    self._bind_object(built, item)
                    items.append(built)
                setattr(record, field.name, items)
                return

        self._assign(record, field, value)


# ============================================================================
# application/xml
# ============================================================================

class XMLDecoder(BaseDecoder):
    """
    Decoder for XML bodies.

    Annotation forms:
        ``name``: text of the child element(s) called ``name``
        ``name,attr``: attribute ``name`` of the current element
        ``,chardata``: text of the current element

    Nested dataclass fields bind the first matching child element. An
    empty body is a no-op.
    """

    namespace = "xml"
    default_content_type = CONTENT_TYPE_XML

    async def decode(self, request: Request, destination: Any) -> None:
        if not _is_record(destination):
            raise NotSupported(type(destination), "xml binds into dataclass instances only")

        try:
            body = await request.body()
        except RequestFault as exc:
            raise TransportParseError(self._content_type, exc) from exc

        if not body.strip():
            return

        try:
            root = ElementTree.fromstring(body)
        except ElementTree.ParseError as exc:
            raise TransportParseError(self._content_type, exc) from exc

        self._bind_element(destination, root)

    def _bind_element(self, record: Any, element: ElementTree.Element) -> None:
        for field, key in self._bound_fields(record):
            name, _, flag = key.partition(",")

            try:
                if flag == "attr":
                    raw = element.get(name)
                    if raw is not None:
                        self._assign(record, field, raw)
                elif flag == "chardata":
                    self._assign(record, field, element.text or "")
                else:
                    self._bind_children(record, field, element.findall(name))
            except BindingFault as fault:
                raise fault.with_field(field.name)

    def _bind_children(self, record: Any, field: FieldMetadata, children: List[ElementTree.Element]) -> None:
        if not children:
            return

        nested = _record_type(field.type)
        if nested is not None:
            current = getattr(record, field.name, None)
            if not isinstance(current, nested):
                current = _new_record(nested)
            self._bind_element(current, children[0])
            setattr(record, field.name, current)
            return

        texts = [(child.text or "").strip() for child in children]
        if is_sequence_type(field.type) or len(texts) > 1:
            self._assign(record, field, texts)
        else:
            self._assign(record, field, texts[0])


# ============================================================================
# Registry
# ============================================================================

class Decoders:
    """
    Content-Type keyed set of decoders.

    Example:
        ```python
        decoders = Decoders.default()
        used = await decoders.decode(request, destination)
        if used is None:
            ...  # no decoder for this Content-Type, destination untouched
        ```
    """

    def __init__(self, *decoders: Decoder):
        self._decoders: Dict[str, Decoder] = {}
        for decoder in decoders:
            self.register(decoder)

    @classmethod
    def default(
        cls,
        *,
        field_cache: Optional[FieldCache] = None,
        max_memory: int = DEFAULT_MAX_MEMORY,
        **options: Any,
    ) -> "Decoders":
        """Form, multipart, JSON and XML decoders sharing one field cache."""
        cache = field_cache if field_cache is not None else FieldCache()
        return cls(
            FormURLDecoder(field_cache=cache, **options),
            MultipartDecoder(field_cache=cache, max_memory=max_memory, **options),
            JSONDecoder(field_cache=cache, **options),
            XMLDecoder(field_cache=cache, **options),
        )

    def register(self, decoder: Decoder) -> None:
        parsed = ParsedContentType.parse(decoder.content_type)
        if parsed is None:
            raise ValueError(f"{decoder!r} advertises no content type")
        self._decoders[parsed.media_type] = decoder

    def get(self, content_type: Optional[str]) -> Optional[Decoder]:
        """Decoder for a Content-Type header value (parameters ignored)."""
        parsed = ParsedContentType.parse(content_type)
        if parsed is None:
            return None
        return self._decoders.get(parsed.media_type)

    def for_request(self, request: Request) -> Optional[Decoder]:
        return self.get(request.content_type())

    async def decode(self, request: Request, destination: Any) -> Optional[Decoder]:
        """
        Decode ``request`` into ``destination`` with the matching decoder.

        Returns:
            The decoder used, or None when none matches the Content-Type
        """
        decoder = self.for_request(request)
        if decoder is None:
            logger.debug("No decoder for content type %r", request.content_type())
            return None

        await decoder.decode(request, destination)
        return decoder

    def __contains__(self, content_type: str) -> bool:
        return self.get(content_type) is not None

    def __iter__(self) -> Iterator[Decoder]:
        return iter(self._decoders.values())

    def __len__(self) -> int:
        return len(self._decoders)
