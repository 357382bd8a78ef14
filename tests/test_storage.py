import re

import pytest

from error_reports.core.errors import UploadFailed
from error_reports.reports.schemas import AttachmentFile
from error_reports.services.storage import AttachmentUploader, StorageClient


def test_missing_or_empty_file_returns_none_without_io(fake_storage):
    uploader = AttachmentUploader(fake_storage)
    assert uploader.upload(None, "midia") is None
    assert uploader.upload(AttachmentFile("x.png", "image/png", b""), "midia") is None
    assert fake_storage.objects == {}


def test_object_key_and_metadata(fake_storage, png_file):
    uploader = AttachmentUploader(fake_storage)
    url = uploader.upload(png_file, "midia")
    assert re.fullmatch(
        r"https://storage\.googleapis\.com/test-bucket/error_reports/midia/\d+_tela_erro\.png",
        url,
    )
    assert fake_storage.objects[url] == (png_file.data, "image/png")


def test_keys_are_strictly_increasing(fake_storage):
    uploader = AttachmentUploader(fake_storage)
    stamps = []
    for _ in range(5):
        name = uploader.build_object_name("banco_de_dados", "a.zip")
        stamps.append(int(name.split("/")[-1].split("_")[0]))
    assert stamps == sorted(set(stamps))


def test_filename_path_components_are_dropped(fake_storage):
    uploader = AttachmentUploader(fake_storage)
    name = uploader.build_object_name("midia", "C:\\fotos\\minha foto.jpg")
    assert name.endswith("_minha_foto.jpg")
    assert "fotos" not in name


def test_failure_raises_upload_failed(failing_storage, png_file):
    uploader = AttachmentUploader(failing_storage)
    with pytest.raises(UploadFailed) as excinfo:
        uploader.upload(png_file, "midia")
    assert "storage indisponivel" in excinfo.value.message
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_local_storage_roundtrip(tmp_path, monkeypatch, zip_file):
    monkeypatch.setenv("LOCAL_STORAGE", "1")
    monkeypatch.setenv("LOCAL_STORAGE_DIR", str(tmp_path / "storage"))
    uploader = AttachmentUploader(StorageClient())
    url = uploader.upload(zip_file, "banco_de_dados")
    assert url.startswith("file://")
    stored = list((tmp_path / "storage" / "error_reports" / "banco_de_dados").iterdir())
    assert len(stored) == 1
    assert stored[0].read_bytes() == zip_file.data

    uploader.discard(url)
    assert not stored[0].exists()


def test_discard_never_raises(fake_storage):
    def _boom(url):
        raise RuntimeError("sem acesso")

    fake_storage.delete_object = _boom
    AttachmentUploader(fake_storage).discard("https://storage.googleapis.com/test-bucket/x")
