"""
Uploaded-file handles for multipart binding.

Provides:
- MultipartFile: one opened upload bound into a destination field
- MultipartFiles: collection of handles with best-effort bulk close
- open_file / open_all_files: resolve handles from a parsed multipart form
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, List, Optional, get_args, get_origin

from .._uploads import FormData, UploadFile
from ..faults import FileCloseError, FileOpenError, NotSupported
from .coercion import optional_inner, unwrap
from .fields import FieldMetadata

logger = logging.getLogger("formbind.binding.files")


# ============================================================================
# MultipartFile
# ============================================================================

@dataclass
class MultipartFile:
    """
    An uploaded file bound into a destination field.

    ``file`` is a stream borrowed from the request's parsed form: it is
    only valid while the request is alive and must be closed by the
    consumer. The default-constructed handle is the empty (zero) value.

    Example:
        ```python
        @dataclass
        class Upload:
            avatar: Optional[MultipartFile] = bind(multipart="avatar", default=None)

        with upload.avatar as avatar:
            data = avatar.read()
        ```
    """

    key: str = ""
    file: Optional[BinaryIO] = None
    upload: Optional[UploadFile] = None

    @property
    def filename(self) -> str:
        return self.upload.filename if self.upload else ""

    @property
    def content_type(self) -> str:
        """Content-Type declared for the part."""
        return self.upload.content_type if self.upload else ""

    @property
    def size(self) -> Optional[int]:
        return self.upload.size if self.upload else None

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self.upload.headers) if self.upload else {}

    @property
    def closed(self) -> bool:
        return self.file is None or self.file.closed

    def is_valid(self) -> bool:
        """True when key, stream and descriptor are all present."""
        return bool(self.key) and self.file is not None and self.upload is not None

    def __bool__(self) -> bool:
        return self.is_valid()

    def read(self, size: int = -1) -> bytes:
        if self.file is None:
            return b""
        return self.file.read(size)

    def close(self) -> None:
        if self.file is not None:
            self.file.close()

    def copy(self) -> "MultipartFile":
        """
        Open a second, independent stream over the same upload.

        Both handles must be closed.

        Raises:
            FileOpenError: If the upload can no longer be opened
        """
        if self.upload is None:
            raise FileOpenError(self.key)
        return MultipartFile(key=self.key, file=_open(self.key, self.upload), upload=self.upload)

    def __enter__(self) -> "MultipartFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


# ============================================================================
# MultipartFiles
# ============================================================================

class MultipartFiles(List[MultipartFile]):
    """Ordered collection of uploaded-file handles."""

    def keys(self) -> List[str]:
        return [item.key for item in self]

    def get(self, key: str) -> Optional[MultipartFile]:
        for item in self:
            if item.key == key:
                return item
        return None

    def close(self) -> None:
        """
        Close every handle in the collection.

        All members are attempted even when some fail; the first failure
        is raised afterwards.

        Raises:
            FileCloseError: Carrying the index and cause of the first failure
        """
        first: Optional[FileCloseError] = None

        for index, item in enumerate(self):
            try:
                item.close()
            except Exception as exc:
                logger.debug("Closing file %r at index %d failed: %s", item.key, index, exc)
                if first is None:
                    first = FileCloseError(index, exc)

        if first is not None:
            raise first from first.cause


# ============================================================================
# Resolution
# ============================================================================

def _open(key: str, upload: UploadFile) -> BinaryIO:
    try:
        return upload.open()
    except OSError as exc:
        raise FileOpenError(key, exc) from exc


def open_file(form: FormData, key: str) -> Optional[MultipartFile]:
    """
    Open the first file uploaded under ``key``.

    Returns:
        The opened handle, or None if nothing was uploaded under ``key``

    Raises:
        FileOpenError: If the upload is listed but cannot be opened
    """
    upload = form.get_file(key)
    if upload is None:
        return None

    return MultipartFile(key=key, file=_open(key, upload), upload=upload)


def open_all_files(form: FormData) -> MultipartFiles:
    """
    Open one handle per uploaded file key, in form order.

    If any upload fails to open, the handles opened so far are closed
    before the FileOpenError propagates.
    """
    files = MultipartFiles()

    try:
        for key in form.files:
            handle = open_file(form, key)
            if handle is not None:
                files.append(handle)
    except FileOpenError:
        try:
            files.close()
        except FileCloseError as exc:
            logger.warning("Cleanup after failed upload open: %s", exc)
        raise

    return files


def _single_target(tp: Any) -> bool:
    tp = unwrap(tp)
    return tp is Any or tp is object or (isinstance(tp, type) and issubclass(tp, MultipartFile))


def _collection_target(tp: Any) -> bool:
    tp = unwrap(tp)
    if tp is Any or tp is object:
        return True
    if tp is list:
        return True
    if get_origin(tp) is None:
        return isinstance(tp, type) and issubclass(tp, MultipartFiles)
    if get_origin(tp) is list:
        args = get_args(tp)
        return not args or _single_target(args[0])
    return False


def ensure_file_destination(field: FieldMetadata, *, collection: bool) -> None:
    """
    Check that ``field`` can hold a file handle (or a collection of them).

    Raises:
        NotSupported: For any other declared type
    """
    tp = unwrap(field.type)
    inner = optional_inner(tp)
    if inner is not None:
        tp = inner

    accepted = _collection_target(tp) if collection else _single_target(tp)
    if not accepted:
        wanted = "a file collection" if collection else "a single file"
        raise NotSupported(field.type, f"cannot hold {wanted}").with_field(field.name)
