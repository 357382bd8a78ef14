import logging
import os
import pathlib
import threading
import time
from functools import lru_cache
from typing import Optional
from urllib.parse import unquote, urlparse

from google.cloud import storage

from error_reports.core.errors import UploadFailed
from error_reports.reports.schemas import AttachmentFile

logger = logging.getLogger("error_reports.storage")

ROOT_FOLDER = "error_reports"
MEDIA_FOLDER = "midia"
ARCHIVE_FOLDER = "banco_de_dados"
PUBLIC_URL_PREFIX = "https://storage.googleapis.com"


class StorageError(Exception):
    pass


class StorageClient:
    """Byte store keyed by path: GCS bucket, or a local directory when no bucket is set."""

    def __init__(self) -> None:
        self.bucket_name = os.getenv("GCS_BUCKET") or os.getenv("NEXT_PUBLIC_FIREBASE_STORAGE_BUCKET")
        self.use_local = os.getenv("LOCAL_STORAGE", "0") == "1" or not self.bucket_name
        self.base_dir = pathlib.Path(os.getenv("LOCAL_STORAGE_DIR", "storage")).resolve()
        if self.use_local:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        self._client = storage.Client() if self.bucket_name and not self.use_local else None

    def _ensure_bucket(self):
        if not self.bucket_name or not self._client:
            raise StorageError("GCS_BUCKET nao configurado.")
        return self._client.bucket(self.bucket_name)

    def upload_bytes(self, content: bytes, dest_path: str, content_type: str) -> str:
        if self.use_local:
            full_path = self.base_dir / dest_path
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(content)
            return full_path.as_uri()
        bucket = self._ensure_bucket()
        blob = bucket.blob(dest_path)
        blob.upload_from_string(content, content_type=content_type)
        return f"{PUBLIC_URL_PREFIX}/{self.bucket_name}/{dest_path}"

    def delete_object(self, file_url: str) -> None:
        if file_url.startswith("file://"):
            path = pathlib.Path(unquote(urlparse(file_url).path))
            path.unlink(missing_ok=True)
            return
        prefix = f"{PUBLIC_URL_PREFIX}/{self.bucket_name}/"
        if file_url.startswith(prefix):
            bucket = self._ensure_bucket()
            bucket.blob(file_url[len(prefix):]).delete()
            return
        raise StorageError("URL de arquivo nao suportada.")


@lru_cache(maxsize=1)
def get_storage_client() -> StorageClient:
    return StorageClient()


def _safe_filename(filename: str) -> str:
    name = os.path.basename((filename or "").replace("\\", "/")) or "arquivo"
    return name.replace(" ", "_")


class AttachmentUploader:
    def __init__(self, client: Optional[StorageClient] = None) -> None:
        self._client = client
        self._lock = threading.Lock()
        self._last_stamp = 0

    @property
    def client(self) -> StorageClient:
        if self._client is None:
            self._client = get_storage_client()
        return self._client

    def _next_stamp(self) -> int:
        with self._lock:
            stamp = max(int(time.time() * 1000), self._last_stamp + 1)
            self._last_stamp = stamp
            return stamp

    def build_object_name(self, folder: str, filename: str) -> str:
        return f"{ROOT_FOLDER}/{folder}/{self._next_stamp()}_{_safe_filename(filename)}"

    def upload(self, file: Optional[AttachmentFile], folder: str) -> Optional[str]:
        if file is None or file.size == 0:
            return None
        object_name = self.build_object_name(folder, file.filename)
        try:
            url = self.client.upload_bytes(file.data, object_name, file.content_type)
        except Exception as exc:
            logger.error("upload failed path=%s error=%s", object_name, exc)
            raise UploadFailed(f"Falha ao enviar o anexo {file.filename}: {exc}") from exc
        logger.info("upload ok path=%s bytes=%s", object_name, file.size)
        return url

    def discard(self, url: Optional[str]) -> None:
        if not url:
            return
        try:
            self.client.delete_object(url)
        except Exception:
            logger.exception("could not discard orphan attachment url=%s", url)


@lru_cache(maxsize=1)
def get_attachment_uploader() -> AttachmentUploader:
    return AttachmentUploader()
