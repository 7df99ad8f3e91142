"""
formbind - Request body binding for async Python services.

Populates dataclass instances (or string-keyed mappings) from
url-encoded forms, multipart uploads, JSON and XML bodies, plus query,
header, cookie and path values, driven by per-field annotations declared
with ``bind()``. Formatter annotations tidy the bound values.

Example:
    ```python
    @dataclass
    class Profile:
        name: str = bind(form="name", multipart="name", json="name", default="")
        age: int = bind(form="age", json="age", default=0)
        avatar: Optional[MultipartFile] = bind(multipart="avatar", default=None)
        locale: str = bind(query="lang", header="Accept-Language", string="trim_space", default="")

    binder = Binder.default()
    profile = Profile()
    await binder.bind(request, profile)
    ```
"""

__version__ = "0.1.0"

# ============================================================================
# Transport
# ============================================================================

from .request import Request

from ._datastructures import (
    MultiDict,
    Headers,
    URL,
    ParsedContentType,
)

from ._uploads import (
    UploadFile,
    FormData,
)

# ============================================================================
# Binding
# ============================================================================

from .binding import (
    ALL_FILES,
    SKIP,
    FieldCache,
    FieldMetadata,
    bind,
    CoercionOptions,
    TextParsable,
    coerce,
    MultipartFile,
    MultipartFiles,
    Decoder,
    Decoders,
    FormURLDecoder,
    MultipartDecoder,
    JSONDecoder,
    XMLDecoder,
    QueryParser,
    HeaderParser,
    CookieParser,
    PathParser,
    Parsers,
    StringFormatter,
    NumericFormatter,
    SliceFormatter,
    TimeFormatter,
    Formatters,
    Binder,
)

# ============================================================================
# Config
# ============================================================================

from .config import BinderConfig, RequestLimits, ConfigLoader, build_binder, build_decoders

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    Fault,
    FaultDomain,
    Severity,
    ConfigInvalidFault,
    BindingFault,
    NotSupported,
    ConversionError,
    TransportParseError,
    FileOpenError,
    FileCloseError,
    FormatterNotFound,
)

__all__ = [
    "__version__",
    # Transport
    "Request",
    "MultiDict",
    "Headers",
    "URL",
    "ParsedContentType",
    "UploadFile",
    "FormData",
    # Binding
    "ALL_FILES",
    "SKIP",
    "FieldCache",
    "FieldMetadata",
    "bind",
    "CoercionOptions",
    "TextParsable",
    "coerce",
    "MultipartFile",
    "MultipartFiles",
    "Decoder",
    "Decoders",
    "FormURLDecoder",
    "MultipartDecoder",
    "JSONDecoder",
    "XMLDecoder",
    "QueryParser",
    "HeaderParser",
    "CookieParser",
    "PathParser",
    "Parsers",
    "StringFormatter",
    "NumericFormatter",
    "SliceFormatter",
    "TimeFormatter",
    "Formatters",
    "Binder",
    # Config
    "BinderConfig",
    "RequestLimits",
    "ConfigLoader",
    "build_binder",
    "build_decoders",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigInvalidFault",
    "BindingFault",
    "NotSupported",
    "ConversionError",
    "TransportParseError",
    "FileOpenError",
    "FileCloseError",
    "FormatterNotFound",
]
