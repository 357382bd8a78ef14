import os
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()

DEFAULT_MAX_ATTACHMENT_BYTES = 100 * 1024 * 1024

DEFAULT_MEDIA_TYPES = [
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
    "video/mp4",
    "video/quicktime",
    "video/webm",
]
DEFAULT_ARCHIVE_TYPES = [
    "application/zip",
    "application/x-zip-compressed",
    "application/vnd.rar",
    "application/x-rar-compressed",
]

SECOND_ATTACHMENT_ARCHIVE = "archive"
SECOND_ATTACHMENT_ATTESTATION = "attestation"


def _split_env(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings:
    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent.parent.parent
        self.APP_NAME: str = os.getenv("APP_NAME", "Relatorio de Erros API")
        self.ENV: str = os.getenv("ENV", "development")
        self.APP_ID: str = os.getenv("APP_ID") or os.getenv("NEXT_PUBLIC_FIREBASE_APP_ID") or ""
        self.SQLALCHEMY_DATABASE_URI: str = os.getenv(
            "SQLALCHEMY_DATABASE_URI",
            f"sqlite:///{(base_dir / 'error_reports.db').as_posix()}",
        )

        self.MAX_ATTACHMENT_BYTES: int = int(
            os.getenv("MAX_ATTACHMENT_BYTES", str(DEFAULT_MAX_ATTACHMENT_BYTES))
        )
        self.ACCEPTED_MEDIA_TYPES: List[str] = _split_env("ACCEPTED_MEDIA_TYPES", DEFAULT_MEDIA_TYPES)
        self.ACCEPTED_ARCHIVE_TYPES: List[str] = _split_env("ACCEPTED_ARCHIVE_TYPES", DEFAULT_ARCHIVE_TYPES)
        mode = os.getenv("SECOND_ATTACHMENT_MODE", SECOND_ATTACHMENT_ARCHIVE).strip().lower()
        if mode not in {SECOND_ATTACHMENT_ARCHIVE, SECOND_ATTACHMENT_ATTESTATION}:
            raise ValueError(f"SECOND_ATTACHMENT_MODE invalido: {mode}")
        self.SECOND_ATTACHMENT_MODE: str = mode

        # Empty means every authenticated principal may edit and delete.
        self.REPORT_EDITOR_UIDS: List[str] = _split_env("REPORT_EDITOR_UIDS", [])
        self.ERROR_HISTORY_SIZE: int = int(os.getenv("ERROR_HISTORY_SIZE", "50"))
        self.LIVE_QUERY_KEEPALIVE_SECONDS: float = float(os.getenv("LIVE_QUERY_KEEPALIVE_SECONDS", "15"))

        default_cors = [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:9002",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:9002",
        ]
        self.BACKEND_CORS_ORIGINS: List[str] = _split_env("BACKEND_CORS_ORIGINS", default_cors)

    @property
    def collection_path(self) -> str:
        return f"artifacts/{self.APP_ID}/public/data/error_reports"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
