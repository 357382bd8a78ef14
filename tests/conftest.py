import os

os.environ.setdefault("APP_ID", "test-app")
os.environ.setdefault("LOCAL_STORAGE", "1")
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from error_reports.core.config import Settings
from error_reports.core.error_emitter import ErrorEmitter
from error_reports.core.security import Principal
from error_reports.db import models
from error_reports.reports.lifecycle import ReportLifecycle
from error_reports.reports.live_query import LiveQueryFeed
from error_reports.reports.schemas import AttachmentFile
from error_reports.reports.store import ReportStore
from error_reports.services.storage import AttachmentUploader


class FakeStorage:
    """Stands in for the bucket; ``fail_on`` makes writes under that folder fail."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.objects = {}
        self.deleted = []

    def upload_bytes(self, content, dest_path, content_type):
        if self.fail_on and f"/{self.fail_on}/" in dest_path:
            raise RuntimeError("storage indisponivel")
        url = f"https://storage.googleapis.com/test-bucket/{dest_path}"
        self.objects[url] = (content, content_type)
        return url

    def delete_object(self, file_url):
        self.deleted.append(file_url)
        self.objects.pop(file_url, None)


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = SessionLocal()
    yield db
    db.close()
    engine.dispose()


@pytest.fixture()
def make_settings(monkeypatch):
    def _make(**env):
        defaults = {
            "APP_ID": "test-app",
            "SECOND_ATTACHMENT_MODE": "archive",
            "REPORT_EDITOR_UIDS": "",
            "MAX_ATTACHMENT_BYTES": str(1024 * 1024),
        }
        defaults.update(env)
        for key, value in defaults.items():
            monkeypatch.setenv(key, value)
        return Settings()

    return _make


@pytest.fixture()
def app_settings(make_settings):
    return make_settings()


@pytest.fixture()
def feed():
    return LiveQueryFeed()


@pytest.fixture()
def emitter():
    return ErrorEmitter(history_size=10)


@pytest.fixture()
def fake_storage():
    return FakeStorage()


@pytest.fixture()
def failing_storage():
    return FakeStorage(fail_on="midia")


@pytest.fixture()
def store(db_session, app_settings, feed):
    return ReportStore(db_session, app_settings, feed)


@pytest.fixture()
def lifecycle(store, fake_storage, app_settings, emitter):
    return ReportLifecycle(store, AttachmentUploader(fake_storage), app_settings, emitter)


@pytest.fixture()
def principal():
    return Principal(uid="anon-uid-1", is_anonymous=True)


@pytest.fixture()
def acme_form():
    return {
        "clientName": "Acme",
        "technicianName": "Jo",
        "errorDate": "2024-01-05",
        "reportText": "disk full",
        "mediaFile": None,
        "zipFile": None,
    }


@pytest.fixture()
def png_file():
    return AttachmentFile(filename="tela erro.png", content_type="image/png", data=b"\x89PNG" + b"0" * 60)


@pytest.fixture()
def zip_file():
    return AttachmentFile(filename="banco.zip", content_type="application/zip", data=b"PK\x03\x04" + b"1" * 60)
