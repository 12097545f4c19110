"""Microsoft Graph helper focused on OneDrive folders, uploads and sharing."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import msal
import requests
from requests import Response

from .config import Settings
from .errors import RemoteStoreError
from .models import RemoteFolder

logger = logging.getLogger(__name__)

ROOT_FOLDER_ID = "root"


class RemoteStore(Protocol):
    """Operations the pipeline needs from the remote storage service."""

    def list_folders(self, name: str, parent_id: str) -> list[RemoteFolder]:
        ...

    def create_folder(self, name: str, parent_id: str) -> str:
        ...

    def upload_file(self, path: Path, file_name: str, mime_type: str, parent_id: str) -> str:
        ...

    def grant_read_access(self, file_id: str, identity: str) -> None:
        ...


class OneDriveClient:
    """Thin wrapper that authenticates with Graph and manages drive items."""

    GRAPH_SCOPE = ["https://graph.microsoft.com/.default"]
    GRAPH_BASE = "https://graph.microsoft.com/v1.0"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.session = requests.Session()
        self.scopes = settings.graph_scopes or ["Files.ReadWrite"]
        self.auth_mode = settings.graph_auth_mode
        self.authority = settings.authority_url
        self._token_cache = None
        self._token_lock = threading.Lock()

        if self.auth_mode == "client_credentials":
            self.app = msal.ConfidentialClientApplication(
                client_id=settings.graph_client_id,
                client_credential=settings.graph_client_secret,
                authority=self.authority,
            )
        else:
            token_cache = msal.SerializableTokenCache()
            cache_path = settings.graph_token_cache
            if cache_path.exists():
                token_cache.deserialize(cache_path.read_text())
            self._token_cache = token_cache
            self.app = msal.PublicClientApplication(
                client_id=settings.graph_client_id,
                authority=self.authority,
                token_cache=token_cache,
            )

    def list_folders(self, name: str, parent_id: str) -> list[RemoteFolder]:
        """Return folders named ``name`` directly under ``parent_id``."""
        url = f"{self.GRAPH_BASE}{self._item_path(parent_id)}/children"
        params: dict[str, Any] | None = {
            "$select": "id,name,folder",
            "$top": self.settings.graph_page_size,
        }
        wanted = name.casefold()
        matches: list[RemoteFolder] = []

        while url:
            logger.debug("Listing children of %s (%s)", parent_id, url)
            payload = self._request("GET", url, params=params).json()
            for raw in payload.get("value", []):
                if "folder" not in raw:
                    continue
                if (raw.get("name") or "").casefold() != wanted:
                    continue
                matches.append(RemoteFolder(folder_id=raw["id"], name=raw["name"], parent_id=parent_id))
            url = payload.get("@odata.nextLink")
            params = None  # only pass params to the first call

        return matches

    def create_folder(self, name: str, parent_id: str) -> str:
        url = f"{self.GRAPH_BASE}{self._item_path(parent_id)}/children"
        body = {
            "name": name,
            "folder": {},
            "@microsoft.graph.conflictBehavior": "fail",
        }
        payload = self._request("POST", url, json=body).json()
        folder_id = payload.get("id")
        if not folder_id:
            raise RemoteStoreError(f"Folder creation for '{name}' returned no id: {payload}")
        logger.info("Created remote folder '%s' under %s (id %s)", name, parent_id, folder_id)
        return folder_id

    def upload_file(self, path: Path, file_name: str, mime_type: str, parent_id: str) -> str:
        """Stream a local file into ``parent_id`` and return the new item id."""
        url = (
            f"{self.GRAPH_BASE}{self._item_path(parent_id)}:/{quote(file_name)}:/content"
        )
        params = {"@microsoft.graph.conflictBehavior": "rename"}
        headers = {"Content-Type": mime_type or "application/octet-stream"}
        with Path(path).open("rb") as stream:
            response = self._request(
                "PUT", url, params=params, data=stream, headers=headers, timeout=300
            )
        payload = self._parse_response_body(response)
        if isinstance(payload, dict):
            return payload.get("id") or ""
        return ""

    def grant_read_access(self, file_id: str, identity: str) -> None:
        url = f"{self.GRAPH_BASE}{self._item_path(file_id)}/invite"
        body = {
            "recipients": [{"email": identity}],
            "roles": ["read"],
            "requireSignIn": True,
            "sendInvitation": self.settings.graph_send_invitation,
        }
        self._request("POST", url, json=body)

    def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
        **kwargs: Any,
    ) -> Response:
        merged = {"Authorization": f"Bearer {self._acquire_token()}"}
        if headers:
            merged.update(headers)
        try:
            resp = self.session.request(method, url, headers=merged, timeout=timeout, **kwargs)
        except requests.RequestException as exc:
            raise RemoteStoreError(f"Graph {method} {url} failed: {exc}") from exc
        if resp.status_code >= 400:
            logger.error("Graph request failed (%s): %s", resp.status_code, resp.text)
            raise RemoteStoreError(
                f"Graph {method} {url} returned {resp.status_code}", status_code=resp.status_code
            )
        return resp

    def _acquire_token(self) -> str:
        with self._token_lock:
            if self.auth_mode == "client_credentials":
                return self._acquire_token_client_credentials()
            return self._acquire_token_device_flow()

    def _acquire_token_client_credentials(self) -> str:
        result = self.app.acquire_token_silent(self.GRAPH_SCOPE, account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=self.GRAPH_SCOPE)
        if "access_token" not in result:
            raise RemoteStoreError(f"Unable to obtain Graph token: {result.get('error_description')}")
        return result["access_token"]

    def _acquire_token_device_flow(self) -> str:
        accounts = self.app.get_accounts()
        result = None
        if accounts:
            result = self.app.acquire_token_silent(self.scopes, account=accounts[0])
        if not result:
            flow = self.app.initiate_device_flow(scopes=self.scopes)
            if "user_code" not in flow:
                raise RemoteStoreError(f"Unable to start device code flow: {flow}")
            logger.info(flow.get("message"))
            result = self.app.acquire_token_by_device_flow(flow)
        if "access_token" not in result:
            raise RemoteStoreError(f"Unable to obtain Graph token: {result.get('error_description')}")
        self._persist_token_cache()
        return result["access_token"]

    def _persist_token_cache(self) -> None:
        if not self._token_cache or not self._token_cache.has_state_changed:
            return
        cache_path: Path = self.settings.graph_token_cache
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(self._token_cache.serialize())

    def _drive_root(self) -> str:
        if self.settings.graph_drive_user:
            user = quote(self.settings.graph_drive_user)
            return f"/users/{user}/drive"
        return "/me/drive"

    def _item_path(self, item_id: str) -> str:
        if item_id == ROOT_FOLDER_ID:
            return f"{self._drive_root()}/root"
        return f"{self._drive_root()}/items/{quote(item_id)}"

    @staticmethod
    def _parse_response_body(response) -> dict | str:
        try:
            return response.json()
        except ValueError:
            return response.text
