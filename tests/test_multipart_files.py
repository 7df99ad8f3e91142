"""
Uploaded-file handles (binding/files.py)
"""

import io
from dataclasses import dataclass
from typing import Any, List, Optional

import pytest

from formbind._uploads import FormData, create_upload_file_from_bytes, create_upload_file_from_path
from formbind.binding.fields import FieldCache, bind
from formbind.binding.files import (
    MultipartFile, MultipartFiles, ensure_file_destination, open_all_files, open_file,
)
from formbind.faults import FileCloseError, FileOpenError, NotSupported


class FailingStream(io.BytesIO):
    """Stream whose first close fails."""

    failed = False

    def close(self):
        if not self.failed:
            self.failed = True
            raise OSError("disk went away")
        super().close()


def handle(key: str, content: bytes = b"data") -> MultipartFile:
    upload = create_upload_file_from_bytes(f"{key}.txt", content, "text/plain")
    return MultipartFile(key=key, file=upload.open(), upload=upload)


class TestMultipartFile:

    def test_zero_value(self):
        empty = MultipartFile()
        assert not empty
        assert not empty.is_valid()
        assert empty.closed
        assert empty.read() == b""
        assert empty.filename == ""
        assert empty.headers == {}
        empty.close()

    def test_descriptor_accessors(self):
        f = handle("doc", b"hello")
        assert f
        assert f.filename == "doc.txt"
        assert f.content_type == "text/plain"
        assert f.size == 5
        assert f.read() == b"hello"

    def test_context_manager_closes(self):
        with handle("doc") as f:
            assert not f.closed
        assert f.closed

    def test_copy_is_independent(self):
        original = handle("doc", b"abc")
        duplicate = original.copy()
        assert original.read() == b"abc"
        original.close()
        assert not duplicate.closed
        assert duplicate.read() == b"abc"
        duplicate.close()

    def test_copy_of_empty_handle_fails(self):
        with pytest.raises(FileOpenError):
            MultipartFile().copy()


class TestMultipartFiles:

    def test_lookup_helpers(self):
        files = MultipartFiles([handle("a"), handle("b")])
        assert files.keys() == ["a", "b"]
        assert files.get("b").key == "b"
        assert files.get("c") is None
        assert isinstance(files, list)

    def test_close_all(self):
        files = MultipartFiles([handle("a"), handle("b")])
        files.close()
        assert all(f.closed for f in files)

    def test_close_empty(self):
        MultipartFiles().close()

    def test_close_failure_reports_index_and_closes_the_rest(self):
        first, last = handle("a"), handle("c")
        failing = MultipartFile(key="b", file=FailingStream(b"x"))
        files = MultipartFiles([first, failing, last])

        with pytest.raises(FileCloseError) as exc_info:
            files.close()

        assert exc_info.value.index == 1
        assert isinstance(exc_info.value.cause, OSError)
        assert exc_info.value.__cause__ is exc_info.value.cause
        assert "index 1" in str(exc_info.value)
        assert first.closed
        assert last.closed

    def test_first_failure_wins(self):
        files = MultipartFiles([
            MultipartFile(key="a", file=FailingStream()),
            MultipartFile(key="b", file=FailingStream()),
        ])
        with pytest.raises(FileCloseError) as exc_info:
            files.close()
        assert exc_info.value.index == 0


class TestResolution:

    def test_open_file(self):
        upload = create_upload_file_from_bytes("a.txt", b"A")
        form = FormData(files={"doc": [upload]})

        f = open_file(form, "doc")
        assert f.key == "doc"
        assert f.upload is upload
        assert f.read() == b"A"

    def test_open_file_absent(self):
        assert open_file(FormData(), "doc") is None

    def test_open_file_takes_first_of_several(self):
        first = create_upload_file_from_bytes("1.txt", b"1")
        second = create_upload_file_from_bytes("2.txt", b"2")
        f = open_file(FormData(files={"doc": [first, second]}), "doc")
        assert f.upload is first

    def test_open_file_failure(self, tmp_path):
        upload = create_upload_file_from_path("gone.txt", tmp_path / "gone.txt")
        with pytest.raises(FileOpenError) as exc_info:
            open_file(FormData(files={"doc": [upload]}), "doc")
        assert exc_info.value.key == "doc"
        assert isinstance(exc_info.value.cause, OSError)

    def test_open_all_files_one_per_key_in_order(self):
        form = FormData(files={
            "b": [create_upload_file_from_bytes("b1.txt", b"b1"), create_upload_file_from_bytes("b2.txt", b"b2")],
            "a": [create_upload_file_from_bytes("a.txt", b"a")],
        })
        files = open_all_files(form)

        assert isinstance(files, MultipartFiles)
        assert files.keys() == ["b", "a"]
        assert files[0].filename == "b1.txt"

    def test_open_all_files_failure_closes_opened(self, tmp_path):
        good = create_upload_file_from_bytes("ok.txt", b"ok")
        gone = create_upload_file_from_path("gone.txt", tmp_path / "gone.txt")
        form = FormData(files={"ok": [good], "gone": [gone]})

        opened = []
        original_open = good.open

        def tracking_open():
            stream = original_open()
            opened.append(stream)
            return stream

        good.open = tracking_open

        with pytest.raises(FileOpenError):
            open_all_files(form)

        assert len(opened) == 1
        assert opened[0].closed


@dataclass
class Destinations:
    single: Optional[MultipartFile] = bind(multipart="single", default=None)
    plain: MultipartFile = bind(multipart="plain", default_factory=MultipartFile)
    anything: Any = bind(multipart="anything", default=None)
    collection: MultipartFiles = bind(multipart="collection", default_factory=MultipartFiles)
    listed: List[MultipartFile] = bind(multipart="listed", default_factory=list)
    text: str = bind(multipart="text", default="")


class TestDestinationCheck:

    @pytest.fixture
    def by_name(self):
        return {f.name: f for f in FieldCache().fields(Destinations)}

    @pytest.mark.parametrize("name", ["single", "plain", "anything"])
    def test_single_accepted(self, by_name, name):
        ensure_file_destination(by_name[name], collection=False)

    @pytest.mark.parametrize("name", ["collection", "listed", "anything"])
    def test_collection_accepted(self, by_name, name):
        ensure_file_destination(by_name[name], collection=True)

    def test_text_rejected(self, by_name):
        with pytest.raises(NotSupported) as exc_info:
            ensure_file_destination(by_name["text"], collection=False)
        assert exc_info.value.metadata["field"] == "text"

    def test_single_into_collection_rejected(self, by_name):
        with pytest.raises(NotSupported):
            ensure_file_destination(by_name["collection"], collection=False)

    def test_collection_into_single_rejected(self, by_name):
        with pytest.raises(NotSupported):
            ensure_file_destination(by_name["single"], collection=True)
