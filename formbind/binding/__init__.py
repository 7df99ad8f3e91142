"""
formbind binding - populate typed destinations from request bodies.

Core exports:
- bind: declare per-decoder annotations on dataclass fields
- FieldCache: per-type field metadata cache
- coerce: type-directed value coercion
- MultipartFile / MultipartFiles: uploaded-file handles
- FormURLDecoder, MultipartDecoder, JSONDecoder, XMLDecoder, Decoders
- QueryParser, HeaderParser, CookieParser, PathParser, Parsers
- StringFormatter, NumericFormatter, SliceFormatter, TimeFormatter, Formatters
- Binder: decoders, parsers and formatters in one call
"""

from .fields import (
    ALL_FILES,
    SKIP,
    DEFAULT_NAMESPACES,
    FORMATTER_NAMESPACES,
    FieldCache,
    FieldMetadata,
    bind,
)

from .coercion import (
    CoercionOptions,
    TextParsable,
    bind_mapping,
    coerce,
    is_zero,
    set_field,
)

from .extract import RawValue, lookup

from .files import (
    MultipartFile,
    MultipartFiles,
    open_all_files,
    open_file,
)

from .decoders import (
    CONTENT_TYPE_FORM_URL,
    CONTENT_TYPE_JSON,
    CONTENT_TYPE_MULTIPART,
    CONTENT_TYPE_XML,
    BaseDecoder,
    Decoder,
    Decoders,
    FormURLDecoder,
    JSONDecoder,
    MultipartDecoder,
    XMLDecoder,
)

from .parsers import (
    CookieParser,
    HeaderParser,
    Parser,
    Parsers,
    PathParser,
    QueryParser,
    path_param_value,
)

from .formatters import (
    BaseFormatter,
    Formatter,
    Formatters,
    NumericFormatter,
    SliceFormatter,
    StringFormatter,
    TimeFormatter,
    parse_duration,
    parse_formatter,
    split_args,
)

from .binder import Binder

__all__ = [
    "ALL_FILES",
    "SKIP",
    "DEFAULT_NAMESPACES",
    "FORMATTER_NAMESPACES",
    "FieldCache",
    "FieldMetadata",
    "bind",
    "CoercionOptions",
    "TextParsable",
    "bind_mapping",
    "coerce",
    "is_zero",
    "set_field",
    "RawValue",
    "lookup",
    "MultipartFile",
    "MultipartFiles",
    "open_all_files",
    "open_file",
    "CONTENT_TYPE_FORM_URL",
    "CONTENT_TYPE_JSON",
    "CONTENT_TYPE_MULTIPART",
    "CONTENT_TYPE_XML",
    "BaseDecoder",
    "Decoder",
    "Decoders",
    "FormURLDecoder",
    "JSONDecoder",
    "MultipartDecoder",
    "XMLDecoder",
    "CookieParser",
    "HeaderParser",
    "Parser",
    "Parsers",
    "PathParser",
    "QueryParser",
    "path_param_value",
    "BaseFormatter",
    "Formatter",
    "Formatters",
    "NumericFormatter",
    "SliceFormatter",
    "StringFormatter",
    "TimeFormatter",
    "parse_duration",
    "parse_formatter",
    "split_args",
    "Binder",
]
