"""
formbind faults - typed fault signals.

Core exports:
- Fault: Base fault class
- FaultDomain: Domain enumeration
- Severity: Severity levels
- Binding faults: NotSupported, ConversionError, TransportParseError,
  FileOpenError, FileCloseError, FormatterNotFound
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .domains import (
    ConfigFault,
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
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigFault",
    "ConfigInvalidFault",
    "BindingFault",
    "NotSupported",
    "ConversionError",
    "TransportParseError",
    "FileOpenError",
    "FileCloseError",
    "FormatterNotFound",
]
