from __future__ import annotations

import io
import os

import pytest
from werkzeug.datastructures import FileStorage

from hira.errors import FILE_TOO_LARGE, TOO_MANY_FILES, FileLimitError, ValidationError
from hira.storage import SUBFOLDER, AttachmentStore, format_file_size

PROJECT = "HIRA-20260101-120000-001"


def _upload(name: str, content: bytes = b"data") -> FileStorage:
    return FileStorage(stream=io.BytesIO(content), filename=name, content_type="application/pdf")


@pytest.fixture()
def store(tmp_path) -> AttachmentStore:
    return AttachmentStore(str(tmp_path), max_files=2, max_total_size=10)


@pytest.mark.parametrize(
    "size, expected",
    [(0, "0 Bytes"), (512, "512 Bytes"), (1024, "1 KB"), (1536, "1.5 KB"), (50 * 1024 * 1024, "50 MB")],
)
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


def test_upload_stores_blob_with_project_prefix(store):
    info = store.upload(_upload("ops plan.pdf"), PROJECT)
    assert info["name"] == "ops_plan.pdf"
    assert info["size"] == 4
    assert info["path"].startswith(f"{SUBFOLDER}/{PROJECT}_")
    assert info["url"] == f"/uploads/{info['path']}"
    assert os.path.exists(store.resolve(info["path"]))


def test_list_files_recovers_original_name(store):
    store.upload(_upload("ops_plan.pdf"), PROJECT)
    store.upload(_upload("other.pdf"), "HIRA-20260101-120000-002")
    files = store.list_files(PROJECT)
    assert [f["name"] for f in files] == ["ops_plan.pdf"]
    assert files[0]["type"] == "application/pdf"


def test_file_count_limit(store):
    store.upload(_upload("a.pdf"), PROJECT)
    store.upload(_upload("b.pdf"), PROJECT)
    with pytest.raises(FileLimitError) as excinfo:
        store.upload(_upload("c.pdf"), PROJECT)
    assert excinfo.value.code == TOO_MANY_FILES


def test_total_size_limit(store):
    with pytest.raises(FileLimitError) as excinfo:
        store.upload(_upload("big.pdf", b"x" * 11), PROJECT)
    assert excinfo.value.code == FILE_TOO_LARGE
    assert store.list_files(PROJECT) == []


def test_upload_requires_project(store):
    with pytest.raises(ValidationError):
        store.upload(_upload("a.pdf"), "")


def test_resolve_rejects_paths_outside_store(store):
    with pytest.raises(ValidationError):
        store.resolve("../../etc/passwd")
    with pytest.raises(ValidationError):
        store.resolve(f"{SUBFOLDER}/../secret")


def test_delete_project_files(store):
    store.upload(_upload("a.pdf"), PROJECT)
    store.upload(_upload("b.pdf"), PROJECT)
    assert store.delete_project_files(PROJECT) == 2
    assert store.list_files(PROJECT) == []
