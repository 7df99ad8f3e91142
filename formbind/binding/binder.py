"""
Binder - one call that fills a destination from a whole request.

Order of work:

1. The body decoder matching the request Content-Type (if any)
2. The request parsers (query, header, cookie, path), dataclasses only
3. The formatters, dataclasses only
4. The destination's own ``prepare()`` hook, sync or async, if it has one

Body values bound in step 1 count as filled for step 2 when skip-filled
is on, so the body wins over request values by default.
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
from typing import Any, MutableMapping, Optional

from ..faults import NotSupported
from ..request import Request
from .decoders import DEFAULT_MAX_MEMORY, Decoders
from .fields import FieldCache
from .formatters import Formatters
from .parsers import Parsers, PathValueFunc

logger = logging.getLogger("formbind.binding.binder")


class Binder:
    """
    Body decoders, request parsers and formatters sharing one field cache.

    Example:
        ```python
        binder = Binder.default()

        async def handler(request):
            search = Search()
            await binder.bind(request, search)
        ```
    """

    def __init__(
        self,
        decoders: Optional[Decoders] = None,
        parsers: Optional[Parsers] = None,
        formatters: Optional[Formatters] = None,
    ):
        self.decoders = decoders if decoders is not None else Decoders()
        self.parsers = parsers if parsers is not None else Parsers()
        self.formatters = formatters if formatters is not None else Formatters()

    @classmethod
    def default(
        cls,
        *,
        field_cache: Optional[FieldCache] = None,
        max_memory: int = DEFAULT_MAX_MEMORY,
        value_from_path: Optional[PathValueFunc] = None,
        **options: Any,
    ) -> "Binder":
        """Every built-in decoder, parser and formatter on one field cache."""
        cache = field_cache if field_cache is not None else FieldCache()
        return cls(
            decoders=Decoders.default(field_cache=cache, max_memory=max_memory, **options),
            parsers=Parsers.default(value_from_path=value_from_path, field_cache=cache, **options),
            formatters=Formatters.default(field_cache=cache),
        )

    async def bind(self, request: Request, destination: Any) -> None:
        """
        Populate ``destination`` from ``request``.

        Raises:
            NotSupported: Destination is neither a dataclass instance nor a
                mapping, or one of its fields cannot be bound
            ConversionError: A value does not fit its field
            TransportParseError: The body could not be parsed
            FormatterNotFound: A formatter annotation names an unknown operation
        """
        is_record = dataclasses.is_dataclass(destination) and not isinstance(destination, type)
        if not (is_record or isinstance(destination, MutableMapping)):
            raise NotSupported(type(destination), "destination must be a dataclass instance or a mapping")

        await self.decoders.decode(request, destination)

        if is_record:
            self.parsers.parse(request, destination)
            self.formatters.format(destination)

        prepare = getattr(destination, "prepare", None)
        if callable(prepare):
            logger.debug("Running prepare hook of %s", type(destination).__qualname__)
            result = prepare()
            if inspect.isawaitable(result):
                await result

    def __repr__(self) -> str:
        return (
            f"Binder(decoders={len(self.decoders)}, parsers={len(self.parsers)}, "
            f"formatters={len(self.formatters)})"
        )
