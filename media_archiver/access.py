"""Grant read access on uploaded files to the configured allow-list."""

from __future__ import annotations

import logging
from typing import Iterable

from .drive_client import RemoteStore
from .errors import AccessGrantError
from .models import AccessGrant, UploadRecord

logger = logging.getLogger(__name__)


class AccessController:
    """Issue one grant per identity; a failed grant never stops the others."""

    def __init__(self, store: RemoteStore, allow_list: Iterable[str]) -> None:
        self.store = store
        self.allow_list = [identity.strip() for identity in allow_list if identity and identity.strip()]

    @property
    def enabled(self) -> bool:
        return bool(self.allow_list)

    def grant_all(self, record: UploadRecord) -> list[AccessGrant]:
        grants: list[AccessGrant] = []
        for identity in self.allow_list:
            try:
                self._grant(record.remote_file_id, identity)
            except AccessGrantError as exc:
                logger.warning("%s", exc)
                grants.append(
                    AccessGrant(
                        remote_file_id=record.remote_file_id,
                        identity=identity,
                        granted=False,
                        error=str(exc),
                    )
                )
                continue
            logger.info("Read access granted to %s on %s", identity, record.file_name)
            grants.append(AccessGrant(remote_file_id=record.remote_file_id, identity=identity))
        return grants

    def _grant(self, file_id: str, identity: str) -> None:
        try:
            self.store.grant_read_access(file_id, identity)
        except Exception as exc:
            raise AccessGrantError(
                f"Granting read access on {file_id} to {identity} failed: {exc}"
            ) from exc
