from unittest import mock

import pytest

from media_archiver.access import AccessController
from media_archiver.errors import UploadError
from media_archiver.models import StagedFile, UploadRecord
from media_archiver.uploader import Uploader


@pytest.fixture
def staged(tmp_path):
    path = tmp_path / "image_1.jpeg"
    path.write_bytes(b"jpeg")
    return StagedFile(local_path=path, mime_type="image/jpeg")


def test_upload_returns_record(fake_store, staged):
    record = Uploader(fake_store).upload(staged, "image_1.jpeg", "folder-9")

    assert record.file_name == "image_1.jpeg"
    assert record.mime_type == "image/jpeg"
    assert fake_store.files[record.remote_file_id]["parent_id"] == "folder-9"
    assert staged.local_path.exists()


def test_upload_failure_keeps_local_file(fake_store, staged):
    fake_store.fail_upload = True

    with pytest.raises(UploadError):
        Uploader(fake_store).upload(staged, "image_1.jpeg", "folder-9")

    assert staged.local_path.exists()


def test_empty_remote_id_is_a_failure(staged):
    store = mock.Mock()
    store.upload_file.return_value = ""

    with pytest.raises(UploadError, match="no remote id"):
        Uploader(store).upload(staged, "image_1.jpeg", "folder-9")


def test_grants_continue_after_a_failure(fake_store):
    fake_store.fail_grants_for = {"first@example.com"}
    controller = AccessController(fake_store, ["first@example.com", "second@example.com"])

    grants = controller.grant_all(UploadRecord("file-1", "video_1.mp4", "video/mp4"))

    assert [g.granted for g in grants] == [False, True]
    assert "first@example.com" in grants[0].error
    assert fake_store.grants == [("file-1", "second@example.com")]


def test_allow_list_entries_are_trimmed_and_blank_ones_dropped(fake_store):
    controller = AccessController(fake_store, [" a@example.com ", "", "  "])

    assert controller.allow_list == ["a@example.com"]
    assert controller.enabled


def test_repeat_grants_are_not_deduplicated(fake_store):
    controller = AccessController(fake_store, ["a@example.com", "a@example.com"])

    controller.grant_all(UploadRecord("file-1", "x", "image/jpeg"))

    assert fake_store.grants == [("file-1", "a@example.com")] * 2


def test_empty_allow_list_grants_nothing(fake_store):
    controller = AccessController(fake_store, [])

    assert not controller.enabled
    assert controller.grant_all(UploadRecord("file-1", "x", "image/jpeg")) == []
