"""
Upload file handling for formbind Request.

Provides:
- UploadFile: descriptor of one uploaded part (memory buffer or spilled temp file)
- FormData: Combined form fields and file uploads
"""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

from ._datastructures import MultiDict

logger = logging.getLogger("formbind.uploads")


# ============================================================================
# UploadFile
# ============================================================================

@dataclass
class UploadFile:
    """
    Uploaded file representation.

    The transport owns the backing storage: small parts stay in memory,
    parts above the request's memory threshold are spilled to a temporary
    file. ``open`` hands out an independent readable stream over either.
    """

    filename: str
    content_type: str
    size: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    _content: Optional[bytes] = None
    _file_path: Optional[Path] = None

    @property
    def in_memory(self) -> bool:
        return self._content is not None

    def open(self) -> BinaryIO:
        """
        Open a new binary stream over the upload content.

        Raises:
            OSError: If the spilled temp file is gone or unreadable
        """
        if self.in_memory:
            return io.BytesIO(self._content)

        if self._file_path is not None:
            return open(self._file_path, "rb")

        return io.BytesIO(b"")

    async def close(self) -> None:
        """Remove the spilled temporary file, if any."""
        if self._file_path and self._file_path.exists():
            try:
                os.unlink(self._file_path)
            except OSError as exc:
                logger.warning("Could not remove upload temp file %s: %s", self._file_path, exc)


# ============================================================================
# FormData
# ============================================================================

@dataclass
class FormData:
    """
    Parsed form data containing both fields and files.

    Used for application/x-www-form-urlencoded and multipart/form-data.
    """

    fields: MultiDict = field(default_factory=MultiDict)
    files: Dict[str, List[UploadFile]] = field(default_factory=dict)

    def get_file(self, name: str) -> Optional[UploadFile]:
        """Get first uploaded file by name."""
        files = self.files.get(name, [])
        return files[0] if files else None

    async def cleanup(self) -> None:
        """Clean up all temporary upload files."""
        for file_list in self.files.values():
            for upload_file in file_list:
                await upload_file.close()


# ============================================================================
# Utility Functions
# ============================================================================

def create_upload_file_from_bytes(
    filename: str,
    content: bytes,
    content_type: str = "application/octet-stream",
    headers: Optional[Dict[str, str]] = None,
) -> UploadFile:
    """Create an in-memory UploadFile."""
    return UploadFile(
        filename=filename,
        content_type=content_type,
        size=len(content),
        headers=dict(headers or {}),
        _content=content,
    )


def create_upload_file_from_path(
    filename: str,
    file_path: Path,
    content_type: str = "application/octet-stream",
    headers: Optional[Dict[str, str]] = None,
) -> UploadFile:
    """Create an UploadFile backed by a file on disk."""
    size = file_path.stat().st_size if file_path.exists() else None

    return UploadFile(
        filename=filename,
        content_type=content_type,
        size=size,
        headers=dict(headers or {}),
        _file_path=file_path,
    )
