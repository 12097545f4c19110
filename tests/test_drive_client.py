from unittest import mock

import pytest

from media_archiver.drive_client import ROOT_FOLDER_ID, OneDriveClient
from media_archiver.errors import RemoteStoreError


def response(status=200, payload=None, text=""):
    resp = mock.Mock()
    resp.status_code = status
    resp.text = text
    resp.json.return_value = payload if payload is not None else {}
    return resp


@pytest.fixture
def client(settings):
    with mock.patch("media_archiver.drive_client.msal") as fake_msal:
        fake_msal.SerializableTokenCache.return_value.has_state_changed = False
        app = fake_msal.PublicClientApplication.return_value
        app.get_accounts.return_value = [{"username": "me"}]
        app.acquire_token_silent.return_value = {"access_token": "token"}
        drive = OneDriveClient(settings)
    drive.session = mock.Mock()
    return drive


def test_list_folders_filters_and_follows_pages(client):
    client.session.request.side_effect = [
        response(
            payload={
                "value": [
                    {"id": "f1", "name": "videos", "folder": {}},
                    {"id": "x1", "name": "Videos"},
                ],
                "@odata.nextLink": "https://graph.microsoft.com/v1.0/next",
            }
        ),
        response(payload={"value": [{"id": "f2", "name": "Audios", "folder": {}}]}),
    ]

    folders = client.list_folders("Videos", ROOT_FOLDER_ID)

    assert [f.folder_id for f in folders] == ["f1"]
    first, second = client.session.request.call_args_list
    assert first.args == ("GET", "https://graph.microsoft.com/v1.0/me/drive/root/children")
    assert first.kwargs["headers"]["Authorization"] == "Bearer token"
    assert second.args[1] == "https://graph.microsoft.com/v1.0/next"
    assert second.kwargs["params"] is None


def test_create_folder_posts_under_parent(client):
    client.session.request.return_value = response(status=201, payload={"id": "new-folder"})

    assert client.create_folder("Audios", "parent-1") == "new-folder"

    call = client.session.request.call_args
    assert call.args == ("POST", "https://graph.microsoft.com/v1.0/me/drive/items/parent-1/children")
    assert call.kwargs["json"]["name"] == "Audios"
    assert call.kwargs["json"]["@microsoft.graph.conflictBehavior"] == "fail"


def test_upload_streams_file(client, tmp_path):
    path = tmp_path / "video_1.mp4"
    path.write_bytes(b"mp4")
    client.session.request.return_value = response(status=201, payload={"id": "item-1"})

    assert client.upload_file(path, "video_1.mp4", "video/mp4", "folder-1") == "item-1"

    call = client.session.request.call_args
    assert call.args == (
        "PUT",
        "https://graph.microsoft.com/v1.0/me/drive/items/folder-1:/video_1.mp4:/content",
    )
    assert call.kwargs["headers"]["Content-Type"] == "video/mp4"
    assert hasattr(call.kwargs["data"], "read")


def test_grant_invites_reader(client):
    client.session.request.return_value = response(payload={"value": []})

    client.grant_read_access("item-1", "a@example.com")

    call = client.session.request.call_args
    assert call.args[1].endswith("/me/drive/items/item-1/invite")
    assert call.kwargs["json"]["roles"] == ["read"]
    assert call.kwargs["json"]["recipients"] == [{"email": "a@example.com"}]


def test_http_errors_raise_remote_store_error(client):
    client.session.request.return_value = response(status=403, text="denied")

    with pytest.raises(RemoteStoreError) as excinfo:
        client.create_folder("Audios", ROOT_FOLDER_ID)

    assert excinfo.value.status_code == 403


def test_token_failure_raises(client):
    client.app.acquire_token_silent.return_value = None
    client.app.initiate_device_flow.return_value = {"error": "bad_client"}

    with pytest.raises(RemoteStoreError, match="device code"):
        client.list_folders("Root", ROOT_FOLDER_ID)
