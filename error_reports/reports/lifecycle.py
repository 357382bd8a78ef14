import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from error_reports.core.config import Settings
from error_reports.core.error_emitter import ErrorEmitter, classify
from error_reports.core.errors import (
    AuthenticationPending,
    ClassifiedError,
    InvalidTransition,
    NotFound,
    OperationContext,
    OPERATION_DELETE,
    OPERATION_UPDATE,
    PersistenceError,
    ReportError,
    UploadFailed,
    ValidationFailed,
)
from error_reports.core.security import Principal
from error_reports.db import models
from error_reports.reports.schemas import ArchiveAttachment, BooleanAttestation, Report, ReportSubmission
from error_reports.reports.store import ReportStore
from error_reports.reports.validation import validate_patch, validate_submission
from error_reports.services.storage import ARCHIVE_FOLDER, MEDIA_FOLDER, AttachmentUploader

logger = logging.getLogger("error_reports.lifecycle")

SUCCESS_MESSAGE = "✅ Relatório de erro enviado com sucesso!"
VALIDATION_MESSAGE = "Falha na validação. Verifique os campos."
AUTH_PENDING_MESSAGE = (
    "Autenticação ou serviço de banco de dados não disponível. Aguarde e tente novamente."
)
STATUS_FAILED_MESSAGE = "Não foi possível atualizar o status."
EDIT_FAILED_MESSAGE = "Não foi possível salvar as alterações."
DELETE_FAILED_MESSAGE = "Não foi possível excluir o relatório."
DELETE_OK_MESSAGE = "O relatório foi removido com sucesso."
EDIT_OK_MESSAGE = "As alterações foram salvas."


class SubmissionState(str, Enum):
    DRAFT = "draft"
    UPLOADING = "uploading"
    PERSISTING = "persisting"
    COMMITTED = "committed"
    FAILED = "failed"


_SUBMISSION_EDGES = {
    SubmissionState.DRAFT: {SubmissionState.UPLOADING},
    SubmissionState.UPLOADING: {SubmissionState.PERSISTING, SubmissionState.FAILED},
    SubmissionState.PERSISTING: {SubmissionState.COMMITTED, SubmissionState.FAILED},
    SubmissionState.COMMITTED: set(),
    SubmissionState.FAILED: set(),
}


class Submission:
    def __init__(self) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.state = SubmissionState.DRAFT
        self.history: List[SubmissionState] = [self.state]

    def advance(self, target: SubmissionState) -> None:
        if target not in _SUBMISSION_EDGES[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        logger.info("submission=%s state %s -> %s", self.id, self.state.value, target.value)
        self.state = target
        self.history.append(target)


class AffordanceState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


class Affordance:
    """Optimistic value shown for a report while a store write is in flight.

    ``rollback`` is the only way back to the last confirmed value.
    """

    def __init__(self, value: Any) -> None:
        self.confirmed = value
        self.displayed = value
        self.state = AffordanceState.IDLE

    def _require(self, expected: AffordanceState, action: str) -> None:
        if self.state != expected:
            raise InvalidTransition(f"{action} from {self.state.value}")

    def begin(self, optimistic: Any) -> None:
        self._require(AffordanceState.IDLE, "begin")
        self.displayed = optimistic
        self.state = AffordanceState.PENDING

    def confirm(self) -> None:
        self._require(AffordanceState.PENDING, "confirm")
        self.confirmed = self.displayed
        self.state = AffordanceState.CONFIRMED

    def rollback(self) -> None:
        self._require(AffordanceState.PENDING, "rollback")
        self.displayed = self.confirmed
        self.state = AffordanceState.REVERTED


@dataclass
class SubmissionResult:
    success: bool
    message: str
    state: SubmissionState
    errors: Optional[Dict[str, List[str]]] = None
    report: Optional[Report] = None
    reset_form: bool = False
    error_kind: Optional[str] = None


@dataclass
class MutationOutcome:
    success: bool
    message: str
    state: AffordanceState
    value: Any = None
    report: Optional[Report] = None
    error: Optional[ClassifiedError] = field(default=None)


def _status_label(status: str) -> str:
    return "concluído" if status == models.STATUS_CONCLUDED else "aberto"


class ReportLifecycle:
    def __init__(
        self,
        store: ReportStore,
        uploader: AttachmentUploader,
        settings: Settings,
        emitter: Optional[ErrorEmitter] = None,
    ) -> None:
        self.store = store
        self.uploader = uploader
        self.settings = settings
        self.emitter = emitter

    def _upload_all(self, payload: ReportSubmission) -> Dict[str, Optional[str]]:
        planned = [("mediaUrl", payload.media_file, MEDIA_FOLDER)]
        if isinstance(payload.second_attachment, ArchiveAttachment):
            planned.append(("zipUrl", payload.second_attachment.file, ARCHIVE_FOLDER))

        urls: Dict[str, Optional[str]] = {}
        failures: List[UploadFailed] = []
        with ThreadPoolExecutor(max_workers=len(planned)) as pool:
            futures = {name: pool.submit(self.uploader.upload, file, folder) for name, file, folder in planned}
            for name, future in futures.items():
                try:
                    urls[name] = future.result()
                except UploadFailed as exc:
                    failures.append(exc)
        if failures:
            self._discard(urls)
            raise failures[0]
        return urls

    def _discard(self, urls: Mapping[str, Optional[str]]) -> None:
        for url in urls.values():
            self.uploader.discard(url)

    def submit(self, form: Mapping[str, Any], principal: Optional[Principal]) -> SubmissionResult:
        submission = Submission()
        if principal is None:
            logger.info("submission=%s blocked: principal pending", submission.id)
            return SubmissionResult(
                success=False,
                message=AUTH_PENDING_MESSAGE,
                state=submission.state,
                error_kind=AuthenticationPending.kind,
            )

        result = validate_submission(form, self.settings)
        if not result.ok:
            logger.info("submission=%s invalid fields=%s", submission.id, ",".join(sorted(result.errors)))
            return SubmissionResult(
                success=False,
                message=VALIDATION_MESSAGE,
                state=submission.state,
                errors=result.errors,
                error_kind="validation",
            )
        payload: ReportSubmission = result.payload

        submission.advance(SubmissionState.UPLOADING)
        try:
            urls = self._upload_all(payload)
        except UploadFailed as exc:
            submission.advance(SubmissionState.FAILED)
            return SubmissionResult(
                success=False,
                message=f"Falha ao enviar o relatório. Erro: {exc.message}",
                state=submission.state,
                error_kind=exc.kind,
            )

        submission.advance(SubmissionState.PERSISTING)
        fields: Dict[str, Any] = {
            "clientName": payload.client_name,
            "technicianName": payload.technician_name,
            "errorDate": payload.error_date,
            "reportText": payload.report_text,
            "mediaUrl": urls.get("mediaUrl"),
            "zipUrl": urls.get("zipUrl"),
        }
        if isinstance(payload.second_attachment, BooleanAttestation):
            fields["databaseSavedOnPC"] = payload.second_attachment.answer
        try:
            report = self.store.create_report(fields, principal)
        except PersistenceError as exc:
            self._discard(urls)
            submission.advance(SubmissionState.FAILED)
            logger.error("submission=%s persist failed: %s", submission.id, exc.message)
            return SubmissionResult(
                success=False,
                message=f"Ocorreu um erro inesperado: {exc.message}",
                state=submission.state,
                error_kind=exc.kind,
            )

        submission.advance(SubmissionState.COMMITTED)
        return SubmissionResult(
            success=True,
            message=SUCCESS_MESSAGE,
            state=submission.state,
            report=report,
            reset_form=True,
        )

    def _context(self, report_id: str, operation: str, data: Optional[dict] = None) -> OperationContext:
        try:
            path = self.store.document_path(report_id)
        except PersistenceError:
            path = f"error_reports/{report_id}"
        return OperationContext(path=path, operation=operation, request_resource_data=data)

    def _fail(
        self,
        affordance: Affordance,
        exc: ReportError,
        context: OperationContext,
        message: str,
    ) -> MutationOutcome:
        classified = classify(exc, context, self.emitter)
        affordance.rollback()
        logger.info(
            "mutation reverted operation=%s path=%s kind=%s",
            context.operation,
            context.path,
            classified.kind,
        )
        return MutationOutcome(
            success=False,
            message=message,
            state=affordance.state,
            value=affordance.displayed,
            error=classified,
        )

    def _load(
        self,
        report_id: str,
        principal: Optional[Principal],
        message: str,
        attempted: Optional[dict] = None,
    ) -> Report | MutationOutcome:
        try:
            try:
                return self.store.get(report_id)
            except NotFound:
                # Without write access the caller gets the permission failure, not the existence one.
                self.store.ensure_write(principal, report_id, OPERATION_UPDATE)
                raise
        except ReportError as exc:
            context = self._context(report_id, OPERATION_UPDATE, attempted)
            return MutationOutcome(
                success=False,
                message=message,
                state=AffordanceState.IDLE,
                error=classify(exc, context, self.emitter),
            )

    def toggle_status(self, report_id: str, principal: Optional[Principal]) -> MutationOutcome:
        current = self._load(report_id, principal, STATUS_FAILED_MESSAGE)
        if isinstance(current, MutationOutcome):
            return current
        new_status = models.STATUS_CONCLUDED if current.status == models.STATUS_OPEN else models.STATUS_OPEN
        affordance = Affordance(current.status)
        affordance.begin(new_status)
        context = self._context(report_id, OPERATION_UPDATE, {"status": new_status})
        try:
            report = self.store.patch(report_id, {"status": new_status}, principal)
        except ReportError as exc:
            return self._fail(affordance, exc, context, STATUS_FAILED_MESSAGE)
        affordance.confirm()
        return MutationOutcome(
            success=True,
            message=f"O relatório foi marcado como {_status_label(new_status)}.",
            state=affordance.state,
            value=affordance.displayed,
            report=report,
        )

    def edit(self, report_id: str, fields: Mapping[str, Any], principal: Optional[Principal]) -> MutationOutcome:
        result = validate_patch(fields, self.settings)
        if not result.ok:
            raise ValidationFailed(result.errors, VALIDATION_MESSAGE)
        changes: Dict[str, Any] = result.payload
        current = self._load(report_id, principal, EDIT_FAILED_MESSAGE, dict(changes))
        if isinstance(current, MutationOutcome):
            return current
        affordance = Affordance({name: getattr(current, name) for name in changes})
        affordance.begin(dict(changes))
        context = self._context(report_id, OPERATION_UPDATE, dict(changes))
        try:
            report = self.store.patch(report_id, changes, principal)
        except ReportError as exc:
            return self._fail(affordance, exc, context, EDIT_FAILED_MESSAGE)
        affordance.confirm()
        return MutationOutcome(
            success=True,
            message=EDIT_OK_MESSAGE,
            state=affordance.state,
            value=affordance.displayed,
            report=report,
        )

    def delete(self, report_id: str, principal: Optional[Principal]) -> MutationOutcome:
        affordance = Affordance(True)
        affordance.begin(False)
        context = self._context(report_id, OPERATION_DELETE)
        try:
            self.store.delete(report_id, principal)
        except ReportError as exc:
            return self._fail(affordance, exc, context, DELETE_FAILED_MESSAGE)
        affordance.confirm()
        return MutationOutcome(
            success=True,
            message=DELETE_OK_MESSAGE,
            state=affordance.state,
            value=affordance.displayed,
        )
