import threading

import pytest

from error_reports.core.error_emitter import PERMISSION_ERROR
from error_reports.core.errors import InvalidTransition, PersistenceError, ValidationFailed
from error_reports.reports.lifecycle import (
    AUTH_PENDING_MESSAGE,
    SUCCESS_MESSAGE,
    Affordance,
    AffordanceState,
    ReportLifecycle,
    Submission,
    SubmissionState,
)
from error_reports.reports.store import ReportStore
from error_reports.services.storage import AttachmentUploader


def test_acme_scenario(lifecycle, principal, acme_form):
    result = lifecycle.submit(acme_form, principal)
    assert result.success
    assert result.message == SUCCESS_MESSAGE
    assert result.state == SubmissionState.COMMITTED
    assert result.reset_form
    assert result.report.status == "open"
    assert result.report.mediaUrl is None
    assert result.report.zipUrl is None
    assert result.report.reportedByUserId == principal.uid


def test_attachments_are_uploaded_and_referenced(lifecycle, principal, acme_form, png_file, zip_file, fake_storage):
    result = lifecycle.submit(dict(acme_form, mediaFile=png_file, zipFile=zip_file), principal)
    assert result.success
    assert "/error_reports/midia/" in result.report.mediaUrl
    assert "/error_reports/banco_de_dados/" in result.report.zipUrl
    assert set(fake_storage.objects) == {result.report.mediaUrl, result.report.zipUrl}


def test_validation_errors_keep_draft_and_skip_store(lifecycle, principal, store, fake_storage, png_file):
    result = lifecycle.submit({"clientName": "Acme", "mediaFile": png_file}, principal)
    assert not result.success
    assert result.state == SubmissionState.DRAFT
    assert set(result.errors) == {"technicianName", "errorDate", "reportText"}
    assert store.list_reports() == []
    assert fake_storage.objects == {}


def test_unauthenticated_submission_is_blocked(lifecycle, store, acme_form):
    result = lifecycle.submit(acme_form, None)
    assert not result.success
    assert result.message == AUTH_PENDING_MESSAGE
    assert result.state == SubmissionState.DRAFT
    assert store.list_reports() == []


def test_media_upload_outage_creates_nothing(
    store, failing_storage, app_settings, emitter, principal, acme_form, png_file, zip_file
):
    lifecycle = ReportLifecycle(store, AttachmentUploader(failing_storage), app_settings, emitter)
    viewer = store.subscribe()

    result = lifecycle.submit(dict(acme_form, mediaFile=png_file, zipFile=zip_file), principal)

    assert not result.success
    assert result.state == SubmissionState.FAILED
    assert result.error_kind == "upload"
    assert result.message.startswith("Falha ao enviar o relatório. Erro:")
    assert store.list_reports() == []
    assert viewer.get(timeout=0.05) is None
    # the archive that did get stored is removed again
    assert failing_storage.objects == {}
    assert len(failing_storage.deleted) == 1
    viewer.cancel()


def test_persistence_failure_is_shown_verbatim(
    db_session, make_settings, feed, fake_storage, emitter, principal, acme_form, png_file
):
    settings = make_settings(APP_ID="")
    lifecycle = ReportLifecycle(ReportStore(db_session, settings, feed), AttachmentUploader(fake_storage), settings, emitter)

    result = lifecycle.submit(dict(acme_form, mediaFile=png_file), principal)

    assert result.state == SubmissionState.FAILED
    assert result.message == "Ocorreu um erro inesperado: ID da aplicação Firebase não configurado no ambiente."
    assert fake_storage.objects == {}
    assert len(fake_storage.deleted) == 1


def test_attestation_variant_is_persisted(db_session, make_settings, feed, fake_storage, emitter, principal, acme_form):
    settings = make_settings(SECOND_ATTACHMENT_MODE="attestation")
    lifecycle = ReportLifecycle(ReportStore(db_session, settings, feed), AttachmentUploader(fake_storage), settings, emitter)
    result = lifecycle.submit(dict(acme_form, databaseSavedOnPC="sim"), principal)
    assert result.success
    assert result.report.databaseSavedOnPC == "sim"
    assert result.report.zipUrl is None


def test_toggle_open_concluded_open(lifecycle, principal, acme_form, store):
    report_id = lifecycle.submit(acme_form, principal).report.id

    outcome = lifecycle.toggle_status(report_id, principal)
    assert outcome.success
    assert outcome.state == AffordanceState.CONFIRMED
    assert outcome.message == "O relatório foi marcado como concluído."
    assert store.get(report_id).status == "concluded"

    outcome = lifecycle.toggle_status(report_id, principal)
    assert outcome.value == "open"
    assert store.get(report_id).status == "open"


def test_denied_toggle_reverts_and_emits(db_session, make_settings, feed, fake_storage, emitter, principal, acme_form):
    settings = make_settings(REPORT_EDITOR_UIDS="staff-1")
    store = ReportStore(db_session, settings, feed)
    lifecycle = ReportLifecycle(store, AttachmentUploader(fake_storage), settings, emitter)
    report_id = lifecycle.submit(acme_form, principal).report.id
    seen = []
    emitter.on(PERMISSION_ERROR, seen.append)

    outcome = lifecycle.toggle_status(report_id, principal)

    assert not outcome.success
    assert outcome.state == AffordanceState.REVERTED
    assert outcome.value == "open"
    assert outcome.message == "Não foi possível atualizar o status."
    assert outcome.error.kind == "permission-denied"
    assert store.get(report_id).status == "open"
    assert len(seen) == 1
    assert seen[0].path == f"artifacts/test-app/public/data/error_reports/{report_id}"
    assert seen[0].operation == "update"
    assert seen[0].request_resource_data == {"status": "concluded"}


def test_edit_patches_fields(lifecycle, principal, acme_form, store):
    report_id = lifecycle.submit(acme_form, principal).report.id
    outcome = lifecycle.edit(report_id, {"reportText": "disco cheio\nservidor parado"}, principal)
    assert outcome.success
    assert outcome.report.reportText == "disco cheio\nservidor parado"
    assert outcome.report.clientName == "Acme"

    with pytest.raises(ValidationFailed) as excinfo:
        lifecycle.edit(report_id, {"clientName": ""}, principal)
    assert "clientName" in excinfo.value.errors


def test_delete_then_repeat_is_not_found(lifecycle, principal, acme_form, store, emitter):
    report_id = lifecycle.submit(acme_form, principal).report.id
    outcome = lifecycle.delete(report_id, principal)
    assert outcome.success
    assert outcome.value is False
    assert report_id not in [r.id for r in store.list_reports()]

    outcome = lifecycle.delete(report_id, principal)
    assert not outcome.success
    assert outcome.state == AffordanceState.REVERTED
    assert outcome.error.kind == "not-found"
    assert emitter.recent() == []


def test_toggle_missing_report(lifecycle, principal):
    outcome = lifecycle.toggle_status("nao-existe", principal)
    assert not outcome.success
    assert outcome.error.kind == "not-found"


def test_submission_edges():
    submission = Submission()
    with pytest.raises(InvalidTransition):
        submission.advance(SubmissionState.COMMITTED)
    submission.advance(SubmissionState.UPLOADING)
    submission.advance(SubmissionState.FAILED)
    with pytest.raises(InvalidTransition):
        submission.advance(SubmissionState.PERSISTING)
    assert submission.history == [SubmissionState.DRAFT, SubmissionState.UPLOADING, SubmissionState.FAILED]


def test_affordance_rollback_edge():
    affordance = Affordance("open")
    affordance.begin("concluded")
    assert affordance.displayed == "concluded"
    affordance.rollback()
    assert affordance.displayed == "open"
    assert affordance.state == AffordanceState.REVERTED
    with pytest.raises(InvalidTransition):
        affordance.confirm()


class BarrierStorage:
    """Both attachments must be in flight at the same time for either write to finish."""

    def __init__(self):
        self.barrier = threading.Barrier(2, timeout=2)
        self.objects = {}

    def upload_bytes(self, content, dest_path, content_type):
        self.barrier.wait()
        url = f"https://storage.googleapis.com/test-bucket/{dest_path}"
        self.objects[url] = (content, content_type)
        return url

    def delete_object(self, file_url):
        self.objects.pop(file_url, None)


def test_attachments_upload_concurrently(store, app_settings, emitter, principal, acme_form, png_file, zip_file):
    storage = BarrierStorage()
    lifecycle = ReportLifecycle(store, AttachmentUploader(storage), app_settings, emitter)

    result = lifecycle.submit(dict(acme_form, mediaFile=png_file, zipFile=zip_file), principal)

    assert result.success
    assert set(storage.objects) == {result.report.mediaUrl, result.report.zipUrl}


def test_failed_read_after_commit_keeps_attachments(lifecycle, store, principal, acme_form, png_file, fake_storage, monkeypatch):
    def _unavailable(report_id):
        raise PersistenceError("read timeout")

    monkeypatch.setattr(store, "get", _unavailable)

    result = lifecycle.submit(dict(acme_form, mediaFile=png_file), principal)

    assert result.success
    assert result.state == SubmissionState.COMMITTED
    assert fake_storage.deleted == []
    assert result.report.mediaUrl in fake_storage.objects
    assert [r.mediaUrl for r in store.list_reports()] == [result.report.mediaUrl]


@pytest.fixture()
def editors_only(db_session, make_settings, feed, fake_storage, emitter):
    settings = make_settings(REPORT_EDITOR_UIDS="staff-1")
    store = ReportStore(db_session, settings, feed)
    return ReportLifecycle(store, AttachmentUploader(fake_storage), settings, emitter)


def test_denied_edit_reverts_fields_and_emits(editors_only, emitter, principal, acme_form):
    report_id = editors_only.submit(dict(acme_form, reportText="texto original"), principal).report.id
    seen = []
    emitter.on(PERMISSION_ERROR, seen.append)

    outcome = editors_only.edit(report_id, {"clientName": "Beta", "reportText": "outro texto"}, principal)

    assert not outcome.success
    assert outcome.state == AffordanceState.REVERTED
    assert outcome.value == {"clientName": "Acme", "reportText": "texto original"}
    assert outcome.message == "Não foi possível salvar as alterações."
    assert editors_only.store.get(report_id).clientName == "Acme"
    assert len(seen) == 1
    assert seen[0].operation == "update"
    assert seen[0].request_resource_data == {"clientName": "Beta", "reportText": "outro texto"}


def test_denied_delete_reverts_and_emits_without_data(editors_only, emitter, principal, acme_form):
    report_id = editors_only.submit(acme_form, principal).report.id
    seen = []
    emitter.on(PERMISSION_ERROR, seen.append)

    outcome = editors_only.delete(report_id, principal)

    assert not outcome.success
    assert outcome.state == AffordanceState.REVERTED
    assert outcome.value is True
    assert outcome.error.kind == "permission-denied"
    assert editors_only.store.get(report_id).id == report_id
    assert len(seen) == 1
    assert seen[0].operation == "delete"
    assert seen[0].request_resource_data is None
    assert "requestResourceData" not in seen[0].to_dict()


def test_denied_mutations_on_missing_report_are_permission_errors(editors_only, emitter, principal):
    seen = []
    emitter.on(PERMISSION_ERROR, seen.append)

    toggled = editors_only.toggle_status("nao-existe", principal)
    edited = editors_only.edit("nao-existe", {"clientName": "Beta"}, principal)

    assert toggled.error.kind == "permission-denied"
    assert edited.error.kind == "permission-denied"
    assert [event.operation for event in seen] == ["update", "update"]
    assert seen[1].request_resource_data == {"clientName": "Beta"}
    assert all(event.path.endswith("/nao-existe") for event in seen)
