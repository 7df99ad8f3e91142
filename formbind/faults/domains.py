"""
formbind faults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- CONFIG faults
- BINDING faults
"""

from typing import Any, Optional, get_origin
from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Base class for configuration faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CONFIG,
            severity=severity,
            retryable=False,
            public=False,
            metadata=metadata,
        )


class ConfigInvalidFault(ConfigFault):
    """Configuration value is invalid."""

    def __init__(self, key: str, reason: str, **kwargs):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Configuration key '{key}' is invalid: {reason}",
            metadata={"key": key, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# BINDING Faults
# ============================================================================

def _type_name(target: Any) -> str:
    if get_origin(target) is None and isinstance(target, type):
        return target.__name__
    return str(target).replace("typing.", "")


class BindingFault(Fault):
    """
    Base class for value binding faults.

    Binding faults are terminal: the decode call that raised one must be
    treated as failed and its destination as invalid.
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        public: bool = True,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.BINDING,
            severity=Severity.ERROR,
            retryable=False,
            public=public,
            metadata=metadata,
        )

    def with_field(self, name: str) -> "BindingFault":
        """Record the destination field this fault was raised for."""
        if "field" not in self.metadata:
            self.metadata["field"] = name
            self.message = f"field '{name}': {self.message}"
            self.args = (self.message,)
        return self


class NotSupported(BindingFault):
    """The destination type cannot be bound by this decoder."""

    def __init__(self, target: Any, reason: Optional[str] = None):
        message = f"binding into {_type_name(target)} is not supported"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            code="BINDING_NOT_SUPPORTED",
            message=message,
            public=False,
            metadata={"target": _type_name(target), "reason": reason},
        )


class ConversionError(BindingFault):
    """A raw value could not be converted to the destination type."""

    def __init__(self, value: Any, target: Any, reason: Optional[str] = None):
        message = f"cannot convert {value!r} to {_type_name(target)}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            code="BINDING_CONVERSION_FAILED",
            message=message,
            metadata={"value": value, "target": _type_name(target)},
        )
        self.value = value
        self.target = target


class TransportParseError(BindingFault):
    """The request form or body could not be parsed by the transport."""

    def __init__(self, content_type: str, cause: Exception):
        super().__init__(
            code="BINDING_TRANSPORT_PARSE",
            message=f"parse {content_type} request body: {cause}",
            metadata={"content_type": content_type},
        )
        self.cause = cause


class FileOpenError(BindingFault):
    """An uploaded file part reported as present could not be opened."""

    def __init__(self, key: str, cause: Optional[Exception] = None):
        message = f"open uploaded file for key {key!r}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(
            code="BINDING_FILE_OPEN",
            message=message,
            public=False,
            metadata={"key": key},
        )
        self.key = key
        self.cause = cause


class FileCloseError(BindingFault):
    """Closing a member of a file collection failed."""

    def __init__(self, index: int, cause: Exception):
        super().__init__(
            code="BINDING_FILE_CLOSE",
            message=f"file collection element with index {index}: {cause}",
            public=False,
            metadata={"index": index},
        )
        self.index = index
        self.cause = cause


class FormatterNotFound(BindingFault):
    """A formatter annotation names a formatter that is not registered."""

    def __init__(self, namespace: str, name: str):
        super().__init__(
            code="BINDING_FORMATTER_NOT_FOUND",
            message=f"formatter {name!r} not found for {namespace!r}",
            public=False,
            metadata={"namespace": namespace, "formatter": name},
        )
        self.namespace = namespace
        self.name = name
