"""Configuration management for the chat media → OneDrive archiver."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal, Sequence

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import MediaCategory

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()


def _split_list(value: str | Sequence[str] | None, coerce_lower: bool = True) -> list[str]:
    """Turn delimiter-separated env strings into cleaned lists."""
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(r"[;,]", value)
    else:
        items = list(value)
    cleaned: list[str] = []
    for item in items:
        trimmed = item.strip()
        if not trimmed:
            continue
        cleaned.append(trimmed.lower() if coerce_lower else trimmed)
    return cleaned


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    local_audio_dir: Path = Field(Path("data/media/audios"), alias="LOCAL_AUDIO_DIR")
    local_image_dir: Path = Field(Path("data/media/imagens"), alias="LOCAL_IMAGE_DIR")
    local_video_dir: Path = Field(Path("data/media/videos"), alias="LOCAL_VIDEO_DIR")
    local_text_dir: Path = Field(Path("data/media/textos"), alias="LOCAL_TEXT_DIR")
    local_contacts_dir: Path = Field(Path("data/media/contatos"), alias="LOCAL_CONTACTS_DIR")
    local_stickers_dir: Path = Field(Path("data/media/stickers"), alias="LOCAL_STICKERS_DIR")
    local_other_dir: Path = Field(Path("data/media/outros"), alias="LOCAL_OTHER_DIR")

    root_folder_name: str = Field(..., alias="ROOT_FOLDER_NAME")
    allowed_emails_raw: str = Field("", alias="EMAILS_ACESSO_PERMITIDO")

    chat_group_name: str = Field("KRATERA", alias="CHAT_GROUP_NAME")
    chat_group_id: str | None = Field(None, alias="CHAT_GROUP_ID")
    spool_dir: Path = Field(Path("data/spool"), alias="SPOOL_DIR")
    poll_interval_seconds: float = Field(2.0, alias="POLL_INTERVAL_SECONDS", gt=0)
    max_concurrent_pipelines: int = Field(4, alias="MAX_CONCURRENT_PIPELINES", ge=1)

    ffmpeg_binary: str = Field("ffmpeg", alias="FFMPEG_BINARY")
    ffmpeg_extra_args_raw: str = Field("", alias="FFMPEG_EXTRA_ARGS")

    graph_tenant_id: str | None = Field(None, alias="GRAPH_TENANT_ID")
    graph_client_id: str = Field(..., alias="GRAPH_CLIENT_ID")
    graph_client_secret: str | None = Field(None, alias="GRAPH_CLIENT_SECRET")
    graph_drive_user: str | None = Field(None, alias="GRAPH_DRIVE_USER")
    graph_auth_mode: Literal["client_credentials", "device_code"] = Field(
        "device_code", alias="GRAPH_AUTH_MODE"
    )
    graph_authority: str | None = Field(None, alias="GRAPH_AUTHORITY")
    graph_scopes_raw: str = Field("Files.ReadWrite", alias="GRAPH_SCOPES")
    graph_page_size: int = Field(200, alias="GRAPH_PAGE_SIZE", ge=1)
    graph_send_invitation: bool = Field(False, alias="GRAPH_SEND_INVITATION")
    graph_token_cache: Path = Field(Path("data/msal_token_cache.bin"), alias="GRAPH_TOKEN_CACHE")

    archive_ledger_db: Path | None = Field(Path("data/archive_ledger.db"), alias="ARCHIVE_LEDGER_DB")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _validate_authentication(self):
        if self.graph_auth_mode == "client_credentials":
            if not self.graph_client_secret:
                raise ValueError("GRAPH_CLIENT_SECRET is required for client_credentials mode.")
            if not self.graph_drive_user:
                raise ValueError("GRAPH_DRIVE_USER is required for client_credentials mode.")
            if not (self.graph_tenant_id or self.graph_authority):
                raise ValueError(
                    "GRAPH_TENANT_ID or GRAPH_AUTHORITY must be provided for client_credentials mode."
                )
        else:
            if self.graph_drive_user:
                raise ValueError(
                    "GRAPH_DRIVE_USER must be omitted for device_code mode; the signed-in drive is used."
                )
        return self

    @field_validator(
        "graph_tenant_id",
        "graph_client_secret",
        "graph_drive_user",
        "graph_authority",
        "chat_group_id",
        "archive_ledger_db",
        mode="before",
    )
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("root_folder_name", "chat_group_name")
    @classmethod
    def _require_folder_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @property
    def authority_url(self) -> str:
        if self.graph_authority:
            return self.graph_authority.rstrip("/")
        if self.graph_tenant_id:
            return f"https://login.microsoftonline.com/{self.graph_tenant_id}"
        return "https://login.microsoftonline.com/consumers"

    @property
    def graph_scopes(self) -> list[str]:
        """Scopes requested for delegated Graph auth."""
        scopes = _split_list(self.graph_scopes_raw, coerce_lower=False)
        return scopes or ["Files.ReadWrite"]

    @property
    def allowed_emails(self) -> list[str]:
        """Identities that receive read access to every uploaded file."""
        return _split_list(self.allowed_emails_raw, coerce_lower=False)

    @property
    def ffmpeg_extra_args(self) -> list[str]:
        return self.ffmpeg_extra_args_raw.split()

    @property
    def local_directories(self) -> dict[MediaCategory, Path]:
        """Staging directory for each attachment category."""
        return {
            MediaCategory.AUDIO: self.local_audio_dir,
            MediaCategory.IMAGE: self.local_image_dir,
            MediaCategory.STICKER: self.local_stickers_dir,
            MediaCategory.VIDEO: self.local_video_dir,
            MediaCategory.CONTACT: self.local_contacts_dir,
            MediaCategory.OTHER: self.local_other_dir,
        }

    @property
    def all_local_directories(self) -> list[Path]:
        """Every configured directory, including the unused text directory."""
        return [*self.local_directories.values(), self.local_text_dir]
