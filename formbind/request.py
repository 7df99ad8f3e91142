"""
Request - ASGI request wrapper used as the binding transport.

Provides:
- Typed, async request object wrapping ASGI scope/receive
- Streaming body support with idempotent caching
- Request values: query string, headers, cookies, path parameters
- Parsing: JSON, url-encoded forms
- Multipart/form-data streaming with disk spilling for large uploads
- Security limits: max body size, max fields, max file size
"""

from __future__ import annotations

import json as stdlib_json
import logging
import os
import tempfile
import uuid
from http.cookies import SimpleCookie
from pathlib import Path
from typing import (
    Any, AsyncIterator, Awaitable, Callable, Dict, List,
    Mapping, Optional, Union
)
from urllib.parse import parse_qsl

from python_multipart import MultipartParser
from python_multipart.multipart import parse_options_header

from ._datastructures import Headers, MultiDict, ParsedContentType
from ._uploads import (
    FormData, UploadFile,
    create_upload_file_from_bytes, create_upload_file_from_path
)
from .faults import Fault, FaultDomain, Severity

logger = logging.getLogger("formbind.request")

PathLike = Union[str, Path]


# ============================================================================
# Request Faults
# ============================================================================

class RequestFault(Fault):
    """Base class for request-related faults."""
    domain = FaultDomain.IO
    severity = Severity.ERROR
    public = True

    def __init__(self, message: str = None, **metadata):
        super().__init__(
            code=self.code,
            message=message or self.message,
            severity=self.severity,
            public=self.public,
            metadata=metadata,
        )


class BadRequest(RequestFault):
    """Malformed request (400)."""
    code = "BAD_REQUEST"
    message = "Bad request"


class PayloadTooLarge(RequestFault):
    """Request payload exceeds limits (413)."""
    code = "PAYLOAD_TOO_LARGE"
    message = "Payload too large"


class UnsupportedMediaType(RequestFault):
    """Unsupported Content-Type (415)."""
    code = "UNSUPPORTED_MEDIA_TYPE"
    message = "Unsupported media type"


class ClientDisconnect(RequestFault):
    """Client disconnected during request (499)."""
    code = "CLIENT_DISCONNECT"
    message = "Client disconnected"
    severity = Severity.WARN


class InvalidJSON(RequestFault):
    """Invalid JSON payload (400)."""
    code = "INVALID_JSON"
    message = "Invalid JSON"


class MultipartParseError(RequestFault):
    """Multipart parsing failed (400)."""
    code = "MULTIPART_PARSE_ERROR"
    message = "Multipart parsing failed"


# ============================================================================
# Request Class
# ============================================================================

class Request:
    """
    Request object feeding the binding decoders and parsers.

    Features:
    - Streaming-first body access
    - JSON parsing with depth limits
    - Form and multipart/form-data parsing (parsed once, then cached)
    - File upload support with spilling to temp files
    """

    def __init__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[dict]],
        *,
        max_body_size: int = 10_485_760,  # 10 MiB
        max_field_count: int = 1000,
        max_file_size: int = 2_147_483_648,  # 2 GiB
        upload_tempdir: Optional[PathLike] = None,
        chunk_size: int = 64 * 1024,
        json_max_size: int = 10_485_760,  # 10 MiB
        json_max_depth: int = 64,
        form_memory_threshold: int = 1024 * 1024,  # 1 MiB
    ):
        """
        Initialize Request.

        Args:
            scope: ASGI scope dict
            receive: ASGI receive callable
            max_body_size: Maximum request body size in bytes
            max_field_count: Maximum number of form fields/parts
            max_file_size: Maximum file upload size in bytes
            upload_tempdir: Directory for temporary upload files
            chunk_size: Default chunk size for streaming
            json_max_size: Maximum JSON payload size
            json_max_depth: Maximum JSON nesting depth
            form_memory_threshold: Default threshold for spilling uploads to disk
        """
        self.scope = scope
        self._receive = receive

        self.max_body_size = max_body_size
        self.max_field_count = max_field_count
        self.max_file_size = max_file_size
        self.upload_tempdir = Path(upload_tempdir) if upload_tempdir else None
        self.chunk_size = chunk_size
        self.json_max_size = json_max_size
        self.json_max_depth = json_max_depth
        self.form_memory_threshold = form_memory_threshold

        self._body: Optional[bytes] = None
        self._body_consumed = False
        self._json: Optional[Any] = None
        self._form_data: Optional[FormData] = None
        self._query_params: Optional[MultiDict] = None
        self._headers: Optional[Headers] = None
        self._cookies: Optional[Dict[str, str]] = None

        self._temp_files: List[Path] = []

    # ========================================================================
    # Basic Properties
    # ========================================================================

    @property
    def query_string(self) -> str:
        raw = self.scope.get("query_string", b"")
        return raw.decode("latin-1") if isinstance(raw, bytes) else raw

    @property
    def query_params(self) -> MultiDict:
        """Parsed query string (cached)."""
        if self._query_params is None:
            self._query_params = MultiDict(parse_qsl(self.query_string, keep_blank_values=True))
        return self._query_params

    @property
    def headers(self) -> Headers:
        if self._headers is None:
            self._headers = Headers(raw=list(self.scope.get("headers", [])))
        return self._headers

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)

    @property
    def cookies(self) -> Dict[str, str]:
        """Cookies from the Cookie header (cached)."""
        if self._cookies is None:
            cookie_header = self.header("cookie", "")
            if cookie_header:
                cookie = SimpleCookie()
                cookie.load(cookie_header)
                self._cookies = {key: morsel.value for key, morsel in cookie.items()}
            else:
                self._cookies = {}
        return self._cookies

    @property
    def path_params(self) -> Dict[str, str]:
        """Path parameters set on the scope by the router."""
        return dict(self.scope.get("path_params") or {})

    def content_type(self) -> Optional[str]:
        return self.header("content-type")

    # ========================================================================
    # Body Reading
    # ========================================================================

    async def _receive_message(self) -> dict:
        message = await self._receive()
        if message["type"] == "http.disconnect":
            raise ClientDisconnect("Client disconnected")
        return message

    async def iter_bytes(self, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        """
        Stream request body in chunks.

        Raises:
            ClientDisconnect: If client disconnects during streaming
            PayloadTooLarge: If body exceeds max_body_size
        """
        chunk_size = chunk_size or self.chunk_size

        if self._body is not None:
            for i in range(0, len(self._body), chunk_size):
                yield self._body[i:i + chunk_size]
            return

        if self._body_consumed:
            return

        total_size = 0

        while True:
            message = await self._receive_message()

            if message["type"] == "http.request":
                chunk = message.get("body", b"")

                if chunk:
                    total_size += len(chunk)
                    if total_size > self.max_body_size:
                        raise PayloadTooLarge(
                            "Request body exceeds maximum size",
                            max_allowed=self.max_body_size,
                            actual=total_size,
                        )
                    yield chunk

                if not message.get("more_body", False):
                    break

        self._body_consumed = True

    async def body(self) -> bytes:
        """Read full request body (idempotent)."""
        if self._body is not None:
            return self._body

        chunks = [chunk async for chunk in self.iter_bytes()]
        self._body = b"".join(chunks)
        return self._body

    # ========================================================================
    # JSON Parsing
    # ========================================================================

    async def json(self) -> Any:
        """
        Parse request body as JSON.

        Raises:
            InvalidJSON: If JSON is malformed or too deeply nested
            PayloadTooLarge: If JSON exceeds size limits
        """
        if self._json is not None:
            return self._json

        body_bytes = await self.body()

        if len(body_bytes) > self.json_max_size:
            raise PayloadTooLarge(
                "JSON payload exceeds maximum size",
                max_allowed=self.json_max_size,
                actual=len(body_bytes),
            )

        try:
            parsed = stdlib_json.loads(body_bytes.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise InvalidJSON(f"Invalid UTF-8 in JSON payload: {e}")
        except stdlib_json.JSONDecodeError as e:
            raise InvalidJSON(f"Invalid JSON: {e}")

        if not self._check_json_depth(parsed, self.json_max_depth):
            raise InvalidJSON(
                "JSON nesting exceeds maximum depth",
                max_depth=self.json_max_depth,
            )

        self._json = parsed
        return self._json

    def _check_json_depth(self, obj: Any, max_depth: int, current_depth: int = 0) -> bool:
        if current_depth > max_depth:
            return False

        if isinstance(obj, dict):
            return all(self._check_json_depth(v, max_depth, current_depth + 1) for v in obj.values())
        if isinstance(obj, list):
            return all(self._check_json_depth(v, max_depth, current_depth + 1) for v in obj)

        return True

    # ========================================================================
    # Form & Multipart Parsing
    # ========================================================================

    async def form(self) -> FormData:
        """
        Parse application/x-www-form-urlencoded form data.

        Raises:
            UnsupportedMediaType: If Content-Type is not form-urlencoded
            BadRequest: If there are too many fields
        """
        if self._form_data is not None:
            return self._form_data

        ct = self.content_type()
        if not ct:
            raise UnsupportedMediaType("No Content-Type header")

        parsed_ct = ParsedContentType.parse(ct)
        if not parsed_ct or parsed_ct.media_type != "application/x-www-form-urlencoded":
            raise UnsupportedMediaType(
                f"Expected application/x-www-form-urlencoded, got {ct}"
            )

        body_bytes = await self.body()
        try:
            body_str = body_bytes.decode(parsed_ct.charset)
        except (LookupError, UnicodeDecodeError) as e:
            raise BadRequest(f"Cannot decode form body: {e}")

        items = parse_qsl(body_str, keep_blank_values=True)

        if len(items) > self.max_field_count:
            raise BadRequest(
                "Too many form fields",
                max_allowed=self.max_field_count,
                actual=len(items),
            )

        self._form_data = FormData(fields=MultiDict(items), files={})
        return self._form_data

    async def multipart(self, max_memory: Optional[int] = None) -> FormData:
        """
        Parse multipart/form-data.

        Args:
            max_memory: Per-file size above which uploads spill to a temp
                file. Defaults to ``form_memory_threshold``.

        Raises:
            UnsupportedMediaType: If Content-Type is not multipart/form-data
            BadRequest: If the boundary is missing or there are too many parts
            PayloadTooLarge: If a file exceeds max_file_size
            MultipartParseError: If multipart parsing fails
        """
        if self._form_data is not None:
            return self._form_data

        ct = self.content_type()
        if not ct:
            raise UnsupportedMediaType("No Content-Type header")

        parsed_ct = ParsedContentType.parse(ct)
        if not parsed_ct or not parsed_ct.media_type.startswith("multipart/"):
            raise UnsupportedMediaType(
                f"Expected multipart/form-data, got {ct}"
            )

        boundary = parsed_ct.boundary
        if not boundary:
            raise BadRequest("No boundary in multipart Content-Type")

        threshold = self.form_memory_threshold if max_memory is None else max_memory
        return await self._parse_multipart_streaming(boundary.encode(), threshold)

    async def _parse_multipart_streaming(self, boundary: bytes, memory_threshold: int) -> FormData:
        """
        Parse multipart form data with python-multipart.

        Small files stay in memory, files above ``memory_threshold`` are
        spilled to disk. Nothing is cached on failure.
        """
        fields = MultiDict()
        files: Dict[str, List[UploadFile]] = {}

        temp_dir = self.upload_tempdir or Path(tempfile.gettempdir()) / "formbind_uploads"
        temp_dir.mkdir(parents=True, exist_ok=True)

        part_count = 0
        current_field_name: Optional[str] = None
        current_filename: Optional[str] = None
        current_content_type: Optional[str] = None
        current_data = bytearray()
        current_temp_file: Optional[Path] = None
        current_file_handle = None
        current_size = 0
        ended = False

        header_state = {
            'field': bytearray(),
            'value': bytearray(),
            'headers': {}
        }

        def on_part_begin():
            nonlocal part_count, current_field_name, current_filename
            nonlocal current_content_type, current_data, current_temp_file
            nonlocal current_file_handle, current_size

            part_count += 1
            if part_count > self.max_field_count:
                raise BadRequest(
                    "Too many multipart parts",
                    max_allowed=self.max_field_count,
                    actual=part_count,
                )

            current_field_name = None
            current_filename = None
            current_content_type = "text/plain"
            current_data = bytearray()
            current_temp_file = None
            current_file_handle = None
            current_size = 0
            header_state['field'] = bytearray()
            header_state['value'] = bytearray()
            header_state['headers'] = {}

        def on_part_data(data: bytes, start: int, end: int):
            nonlocal current_data, current_size, current_temp_file, current_file_handle

            chunk = data[start:end]
            current_size += len(chunk)

            if current_filename and current_size > self.max_file_size:
                if current_file_handle:
                    current_file_handle.close()
                    current_file_handle = None

                raise PayloadTooLarge(
                    "File upload exceeds maximum size",
                    max_allowed=self.max_file_size,
                    actual=current_size,
                    filename=current_filename,
                )

            if current_filename:
                if current_size > memory_threshold and not current_temp_file:
                    current_temp_file = temp_dir / f"{uuid.uuid4().hex}_{current_filename}"
                    current_file_handle = open(current_temp_file, "wb")

                    if current_data:
                        current_file_handle.write(current_data)
                        current_data = bytearray()

                    self._temp_files.append(current_temp_file)

                if current_temp_file and current_file_handle:
                    current_file_handle.write(chunk)
                else:
                    current_data.extend(chunk)
            else:
                current_data.extend(chunk)

        def on_part_end():
            nonlocal current_file_handle

            if current_file_handle:
                current_file_handle.close()
                current_file_handle = None

            if not current_field_name:
                return

            if current_filename:
                part_headers = dict(header_state['headers'])
                content_type = current_content_type or "application/octet-stream"
                if current_temp_file:
                    upload = create_upload_file_from_path(
                        filename=current_filename,
                        file_path=current_temp_file,
                        content_type=content_type,
                        headers=part_headers,
                    )
                else:
                    upload = create_upload_file_from_bytes(
                        filename=current_filename,
                        content=bytes(current_data),
                        content_type=content_type,
                        headers=part_headers,
                    )

                files.setdefault(current_field_name, []).append(upload)
            else:
                try:
                    value = current_data.decode("utf-8")
                except UnicodeDecodeError:
                    value = current_data.decode("utf-8", errors="replace")

                fields.add(current_field_name, value)

        def on_header_field(data: bytes, start: int, end: int):
            header_state['field'].extend(data[start:end])

        def on_header_value(data: bytes, start: int, end: int):
            header_state['value'].extend(data[start:end])

        def on_header_end():
            if header_state['field']:
                field_name = header_state['field'].decode("utf-8", errors="replace").lower()
                field_value = header_state['value'].decode("utf-8", errors="replace")
                header_state['headers'][field_name] = field_value

            header_state['field'] = bytearray()
            header_state['value'] = bytearray()

        def on_end():
            nonlocal ended
            ended = True

        def on_headers_finished():
            nonlocal current_field_name, current_filename, current_content_type

            content_disposition = header_state['headers'].get("content-disposition", "")
            if content_disposition:
                _, options = parse_options_header(content_disposition)

                name = options.get(b"name")
                if name is not None:
                    current_field_name = name.decode("utf-8") if isinstance(name, bytes) else name

                filename = options.get(b"filename")
                if filename:
                    if isinstance(filename, bytes):
                        filename = filename.decode("utf-8")
                    current_filename = self._sanitize_filename(filename)

            content_type = header_state['headers'].get("content-type")
            if content_type:
                current_content_type = content_type

        callbacks = {
            "on_part_begin": on_part_begin,
            "on_part_data": on_part_data,
            "on_part_end": on_part_end,
            "on_header_field": on_header_field,
            "on_header_value": on_header_value,
            "on_header_end": on_header_end,
            "on_headers_finished": on_headers_finished,
            "on_end": on_end,
        }

        parser = MultipartParser(boundary, callbacks)

        try:
            async for chunk in self.iter_bytes():
                bytes_parsed = parser.write(chunk)

                if bytes_parsed != len(chunk):
                    raise MultipartParseError(
                        f"Parser did not consume all bytes: expected {len(chunk)}, got {bytes_parsed}"
                    )

            parser.finalize()

            if not ended:
                raise MultipartParseError("Multipart body ended before the closing boundary")

        except Exception as e:
            if current_file_handle:
                current_file_handle.close()
            await self.cleanup()

            if isinstance(e, Fault):
                raise
            raise MultipartParseError(f"Multipart parsing failed: {e}") from e

        logger.debug(
            "Parsed multipart body: %d fields, %d file keys",
            len(fields), len(files),
        )
        self._form_data = FormData(fields=fields, files=files)
        return self._form_data

    def _sanitize_filename(self, filename: str) -> str:
        """Sanitize uploaded filename."""
        filename = os.path.basename(filename.replace("\\", "/"))

        filename = filename.replace("\x00", "")
        for char in ["<", ">", ":", '"', "/", "\\", "|", "?", "*"]:
            filename = filename.replace(char, "_")

        if len(filename) > 255:
            name, ext = os.path.splitext(filename)
            filename = name[:250] + ext

        return filename or "unnamed"

    # ========================================================================
    # Cleanup
    # ========================================================================

    async def cleanup(self) -> None:
        """Remove temporary upload files."""
        if self._form_data:
            await self._form_data.cleanup()

        for temp_file in self._temp_files:
            if temp_file.exists():
                try:
                    temp_file.unlink()
                except OSError as exc:
                    logger.warning("Could not remove upload temp file %s: %s", temp_file, exc)

        self._temp_files.clear()
