"""
Shared test fixtures and helpers for the formbind test suite.
"""

import pytest
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlencode

from formbind.request import Request


BOUNDARY = "----formbindboundary7MA4YWxk"


# ============================================================================
# Request Helpers
# ============================================================================


def make_scope(
    method: str = "POST",
    path: str = "/",
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    path_params: Optional[dict] = None,
) -> dict:
    """Build a minimal ASGI HTTP scope."""
    raw_headers = []
    if headers:
        for name, value in headers:
            raw_headers.append(
                (name.encode("latin-1") if isinstance(name, str) else name,
                 value.encode("latin-1") if isinstance(value, str) else value)
            )
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string.encode("utf-8") if isinstance(query_string, str) else query_string,
        "headers": raw_headers,
        "scheme": "http",
        "server": ("127.0.0.1", 8000),
        "client": ("127.0.0.1", 12345),
        "root_path": "",
        "path_params": dict(path_params or {}),
    }


def make_receive(body: bytes = b"", *, chunks: Optional[List[bytes]] = None):
    """Create an ASGI receive callable from body bytes or chunked list."""
    if chunks:
        messages = []
        for i, chunk in enumerate(chunks):
            messages.append({
                "type": "http.request",
                "body": chunk,
                "more_body": i < len(chunks) - 1,
            })
    else:
        messages = [{"type": "http.request", "body": body, "more_body": False}]

    idx = 0

    async def receive():
        nonlocal idx
        if idx < len(messages):
            msg = messages[idx]
            idx += 1
            return msg
        return {"type": "http.disconnect"}

    return receive


def make_request(
    content_type: Optional[str] = None,
    body: bytes = b"",
    *,
    method: str = "POST",
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    path_params: Optional[dict] = None,
    chunks: Optional[List[bytes]] = None,
    **kwargs,
) -> Request:
    """Build a full Request object for testing."""
    all_headers = list(headers or [])
    if content_type is not None:
        all_headers.append(("content-type", content_type))
    scope = make_scope(
        method=method,
        query_string=query_string,
        headers=all_headers,
        path_params=path_params,
    )
    return Request(scope, make_receive(body, chunks=chunks), **kwargs)


# ============================================================================
# Body Builders
# ============================================================================


def form_request(pairs: Iterable[Tuple[str, str]] = (), **kwargs) -> Request:
    """Url-encoded POST request from (name, value) pairs."""
    body = urlencode(list(pairs)).encode("utf-8")
    return make_request("application/x-www-form-urlencoded", body, **kwargs)


def multipart_body(
    fields: Iterable[Tuple[str, str]] = (),
    files: Iterable[Tuple[str, str, bytes, str]] = (),
    boundary: str = BOUNDARY,
) -> bytes:
    """
    Encode a multipart/form-data body.

    ``fields`` are (name, value); ``files`` are
    (name, filename, content, content_type).
    """
    marker = f"--{boundary}".encode()
    parts = []

    for name, value in fields:
        parts.append(
            marker + b"\r\n"
            + f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode()
            + value.encode("utf-8") + b"\r\n"
        )

    for name, filename, content, content_type in files:
        parts.append(
            marker + b"\r\n"
            + f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'.encode()
            + f"Content-Type: {content_type}\r\n\r\n".encode()
            + content + b"\r\n"
        )

    return b"".join(parts) + marker + b"--\r\n"


def multipart_request(
    fields: Iterable[Tuple[str, str]] = (),
    files: Iterable[Tuple[str, str, bytes, str]] = (),
    **kwargs,
) -> Request:
    """multipart/form-data POST request."""
    body = multipart_body(fields, files)
    return make_request(f"multipart/form-data; boundary={BOUNDARY}", body, **kwargs)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def upload_tempdir(tmp_path):
    """Isolated spill directory for multipart uploads."""
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture(autouse=True)
def _clear_formbind_env(monkeypatch):
    """Keep FORMBIND_* variables from the host out of config tests."""
    import os

    for key in list(os.environ):
        if key.startswith("FORMBIND_"):
            monkeypatch.delenv(key, raising=False)
