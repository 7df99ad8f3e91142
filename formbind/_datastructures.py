"""
Core data structures for formbind request handling.

Provides:
- MultiDict: Multi-value dictionary for query params and form data
- Headers: Case-insensitive header access
- URL: URL parsing and building (parses itself from text)
- ParsedContentType: Content-Type parsing helper
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Dict, Iterator, List, Mapping, MutableMapping,
    Optional, Tuple, Union
)
from urllib.parse import urlparse, urlunparse


# ============================================================================
# MultiDict
# ============================================================================

class MultiDict(MutableMapping[str, List[str]]):
    """
    Dictionary that supports multiple values per key.

    Used for query parameters and form data where keys can repeat.
    Indexing returns the full value list, ``get`` returns the first value.
    """

    def __init__(self, items: Optional[Union[List[Tuple[str, str]], Mapping[str, Union[str, List[str]]]]] = None):
        self._data: Dict[str, List[str]] = {}

        if items:
            if isinstance(items, list):
                for key, value in items:
                    self.add(key, value)
            elif isinstance(items, Mapping):
                for key, value in items.items():
                    if isinstance(value, list):
                        self._data[key] = list(value)
                    else:
                        self._data[key] = [value]

    def __getitem__(self, key: str) -> List[str]:
        """Get all values for a key."""
        return self._data[key]

    def __setitem__(self, key: str, value: Union[str, List[str]]) -> None:
        """Set values for a key (replaces existing)."""
        if isinstance(value, list):
            self._data[key] = value
        else:
            self._data[key] = [value]

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"MultiDict({dict(self._data)})"

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for a key."""
        values = self._data.get(key)
        return values[0] if values else default

    def get_all(self, key: str) -> List[str]:
        """Get all values for a key."""
        return self._data.get(key, [])

    def add(self, key: str, value: str) -> None:
        """Add a value to a key (appends to list)."""
        if key in self._data:
            self._data[key].append(value)
        else:
            self._data[key] = [value]


# ============================================================================
# Headers
# ============================================================================

@dataclass
class Headers:
    """
    Case-insensitive header access with raw preservation.

    Normalizes header names while preserving original casing.
    """

    raw: List[Tuple[bytes, bytes]] = field(default_factory=list)
    _index: Dict[str, List[Tuple[bytes, bytes]]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self._index = {}
        for name, value in self.raw:
            key = name.decode("latin-1").lower()
            self._index.setdefault(key, []).append((name, value))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for header (case-insensitive)."""
        pairs = self._index.get(name.lower())
        if pairs:
            return pairs[0][1].decode("latin-1")
        return default

    def get_all(self, name: str) -> List[str]:
        """Get all values for header (case-insensitive)."""
        pairs = self._index.get(name.lower(), [])
        return [value.decode("latin-1") for _, value in pairs]

    def items(self) -> Iterator[Tuple[str, str]]:
        for name, value in self.raw:
            yield name.decode("latin-1"), value.decode("latin-1")

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._index

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(f"Header '{name}' not found")
        return value

    def __repr__(self) -> str:
        return f"Headers({list(self.items())})"


# ============================================================================
# URL
# ============================================================================

@dataclass
class URL:
    """
    Parsed URL representation.

    ``URL.parse`` makes this type bindable straight from a form value:
    a field annotated as ``URL`` receives the parsed components.
    """

    scheme: str = ""
    host: str = ""
    port: Optional[int] = None
    path: str = ""
    query: str = ""
    fragment: str = ""
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def parse(cls, url: str) -> "URL":
        """
        Parse URL string into components.

        Raises:
            ValueError: If the port is not a valid integer
        """
        parsed = urlparse(url)

        return cls(
            scheme=parsed.scheme,
            host=parsed.hostname or "",
            port=parsed.port,
            path=parsed.path,
            query=parsed.query,
            fragment=parsed.fragment,
            username=parsed.username,
            password=parsed.password,
        )

    @property
    def netloc(self) -> str:
        """Build netloc string."""
        if self.username:
            auth = self.username
            if self.password:
                auth += f":{self.password}"
            netloc = f"{auth}@{self.host}"
        else:
            netloc = self.host

        if self.port:
            # Only include port if non-standard
            if not ((self.scheme == "http" and self.port == 80) or
                    (self.scheme == "https" and self.port == 443)):
                netloc += f":{self.port}"

        return netloc

    def __bool__(self) -> bool:
        # The all-empty URL is the zero value
        return any((self.scheme, self.host, self.path, self.query, self.fragment))

    def __str__(self) -> str:
        return urlunparse((
            self.scheme,
            self.netloc,
            self.path,
            "",
            self.query,
            self.fragment,
        ))



# ============================================================================
# ParsedContentType
# ============================================================================

@dataclass
class ParsedContentType:
    """
    Parsed Content-Type header.

    Extracts media type and parameters (e.g., charset, boundary).
    """

    media_type: str
    params: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, content_type: Optional[str]) -> Optional["ParsedContentType"]:
        if not content_type:
            return None

        parts = content_type.split(";")
        media_type = parts[0].strip().lower()

        params = {}
        for part in parts[1:]:
            if "=" in part:
                key, value = part.split("=", 1)
                params[key.strip().lower()] = value.strip().strip('"')

        return cls(media_type=media_type, params=params)

    @property
    def charset(self) -> str:
        """Get charset parameter (default: utf-8)."""
        return self.params.get("charset", "utf-8")

    @property
    def boundary(self) -> Optional[str]:
        """Get boundary parameter (for multipart)."""
        return self.params.get("boundary")
