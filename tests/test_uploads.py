"""
Uploads (_uploads.py)

Tests UploadFile and FormData.
"""

import pytest

from formbind._uploads import (
    UploadFile, FormData,
    create_upload_file_from_bytes, create_upload_file_from_path,
)
from formbind._datastructures import MultiDict


# ============================================================================
# UploadFile
# ============================================================================

class TestUploadFile:

    def test_in_memory_open(self):
        uf = create_upload_file_from_bytes(
            filename="test.txt",
            content=b"hello world",
            content_type="text/plain",
        )
        assert uf.in_memory
        assert uf.size == 11
        with uf.open() as stream:
            assert stream.read() == b"hello world"

    def test_each_open_starts_at_zero(self):
        uf = create_upload_file_from_bytes("data.bin", b"0123456789")
        with uf.open() as stream:
            assert stream.read(5) == b"01234"
        with uf.open() as stream:
            assert stream.read(5) == b"01234"

    @pytest.mark.asyncio
    async def test_file_on_disk(self, tmp_path):
        path = tmp_path / "spilled.txt"
        path.write_bytes(b"disk content")

        uf = create_upload_file_from_path("disk.txt", path, content_type="text/plain")
        assert not uf.in_memory
        assert uf.size == 12
        with uf.open() as stream:
            assert stream.read() == b"disk content"

        await uf.close()
        assert not path.exists()

    def test_no_backing_storage_is_empty(self):
        uf = UploadFile(filename="none.txt", content_type="text/plain")
        assert not uf.in_memory
        with uf.open() as stream:
            assert stream.read() == b""

    def test_open_returns_independent_streams(self):
        uf = create_upload_file_from_bytes("a.txt", b"abc")
        first, second = uf.open(), uf.open()
        assert first.read() == b"abc"
        assert second.read() == b"abc"
        first.close()
        assert not second.closed

    def test_open_missing_spill_file_raises(self, tmp_path):
        uf = create_upload_file_from_path("gone.txt", tmp_path / "gone.txt")
        assert uf.size is None
        with pytest.raises(OSError):
            uf.open()

    def test_headers_are_copied(self):
        headers = {"content-type": "text/plain"}
        uf = create_upload_file_from_bytes("a.txt", b"", headers=headers)
        headers["x-extra"] = "1"
        assert uf.headers == {"content-type": "text/plain"}


# ============================================================================
# FormData
# ============================================================================

class TestFormData:

    def test_fields_only(self):
        fd = FormData(fields=MultiDict([("name", "alice"), ("tag", "a"), ("tag", "b")]))
        assert fd.fields.get("name") == "alice"
        assert fd.fields.get_all("tag") == ["a", "b"]
        assert fd.get_file("name") is None

    def test_with_files(self):
        first = create_upload_file_from_bytes("1.txt", b"1")
        second = create_upload_file_from_bytes("2.txt", b"2")
        fd = FormData(files={"doc": [first, second]})

        assert fd.get_file("doc") is first
        assert fd.files["doc"] == [first, second]
        assert fd.get_file("missing") is None

    @pytest.mark.asyncio
    async def test_cleanup(self, tmp_path):
        path = tmp_path / "upload.bin"
        path.write_bytes(b"data")
        fd = FormData(files={"f": [create_upload_file_from_path("u.bin", path)]})

        await fd.cleanup()
        assert not path.exists()
