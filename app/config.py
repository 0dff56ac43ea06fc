from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Project root (parent of app/); holds .env and the default data paths
ROOT_DIR = Path(__file__).parent.parent

# Extension -> MIME type. Keys double as the default upload allow-list.
MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "md": "text/markdown",
    "csv": "text/csv",
    "json": "application/json",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "zip": "application/zip",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "rar": "application/vnd.rar",
    "7z": "application/x-7z-compressed",
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
}

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "svg"}

ADMIN_COOKIE = "shortdrop_admin"
ADMIN_COOKIE_MAX_AGE = 30 * 24 * 3600


def mime_for(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return MIME_TYPES.get(ext, "application/octet-stream")


class Settings(BaseSettings):
    """Runtime settings, read from the environment and the project-root .env."""

    environment: str = "dev"
    public_base_url: str = "http://localhost:8080"
    database_url: str = f"sqlite:///{ROOT_DIR / 'shortdrop.db'}"
    upload_dir: Path = ROOT_DIR / "uploads"
    max_upload_bytes: int = 1024 * 1024 * 1024
    allowed_extensions: Annotated[frozenset[str], NoDecode] = frozenset(MIME_TYPES)
    session_ttl_seconds: int = 0
    host: str = "127.0.0.1"
    port: int = 8080

    model_config = SettingsConfigDict(env_file=ROOT_DIR / ".env", extra="ignore")

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def split_extensions(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        return frozenset(ext.strip().lstrip(".").lower() for ext in value if ext.strip())

    @property
    def base_url(self) -> str:
        return self.public_base_url.rstrip("/")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
