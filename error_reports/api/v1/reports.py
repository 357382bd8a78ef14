import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from sqlalchemy.orm import Session

from error_reports.core.config import Settings, get_settings
from error_reports.core.error_emitter import get_error_emitter
from error_reports.core.errors import AuthenticationPending, ReportError, ValidationFailed
from error_reports.core.security import Principal, get_current_principal, get_optional_principal
from error_reports.db.session import get_db
from error_reports.reports.export import export_filename, render_report_text
from error_reports.reports.lifecycle import MutationOutcome, ReportLifecycle, SubmissionResult
from error_reports.reports.live_query import Snapshot
from error_reports.reports.schemas import AttachmentFile, ReportUpdate
from error_reports.reports.store import ReportStore
from error_reports.services.storage import get_attachment_uploader

logger = logging.getLogger("error_reports.api")

router = APIRouter(tags=["Relatorios"])

_SUBMISSION_STATUS = {
    None: status.HTTP_201_CREATED,
    "validation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    AuthenticationPending.kind: status.HTTP_401_UNAUTHORIZED,
    "upload": status.HTTP_502_BAD_GATEWAY,
    "persistence": status.HTTP_503_SERVICE_UNAVAILABLE,
}
_MUTATION_STATUS = {
    "not-found": status.HTTP_404_NOT_FOUND,
    "permission-denied": status.HTTP_403_FORBIDDEN,
    "persistence": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_report_store(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ReportStore:
    return ReportStore(db, settings)


def get_lifecycle(
    store: ReportStore = Depends(get_report_store),
    settings: Settings = Depends(get_settings),
) -> ReportLifecycle:
    return ReportLifecycle(store, get_attachment_uploader(), settings, get_error_emitter())


def _internal_error():
    logger.exception("Erro interno em relatorios")
    return JSONResponse(status_code=500, content={"message": "Ocorreu um erro, tente novamente mais tarde"})


def _read_upload(upload: Optional[UploadFile]) -> Optional[AttachmentFile]:
    if upload is None or not upload.filename:
        return None
    return AttachmentFile(
        filename=upload.filename,
        content_type=upload.content_type or "application/octet-stream",
        data=upload.file.read(),
    )


def _submission_response(result: SubmissionResult) -> JSONResponse:
    body = {
        "success": result.success,
        "message": result.message,
        "state": result.state.value,
        "errors": result.errors,
        "report": result.report.model_dump(mode="json") if result.report else None,
        "resetForm": result.reset_form,
    }
    code = _SUBMISSION_STATUS.get(result.error_kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=code, content=jsonable_encoder(body))


def _mutation_response(outcome: MutationOutcome, success_code: int = status.HTTP_200_OK) -> JSONResponse:
    body: dict[str, Any] = {
        "success": outcome.success,
        "message": outcome.message,
        "state": outcome.state.value,
        "value": outcome.value,
        "report": outcome.report.model_dump(mode="json") if outcome.report else None,
    }
    if outcome.success:
        return JSONResponse(status_code=success_code, content=jsonable_encoder(body))
    kind = outcome.error.kind if outcome.error else None
    body["error"] = kind
    code = _MUTATION_STATUS.get(kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=code, content=jsonable_encoder(body))


def _raise_for(exc: ReportError):
    if isinstance(exc, ValidationFailed):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": exc.message, "errors": exc.errors},
        ) from exc
    code = _MUTATION_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    raise HTTPException(status_code=code, detail=exc.message) from exc


def _sse(snapshot: Snapshot) -> str:
    payload = [report.model_dump(mode="json") for report in snapshot]
    return f"event: snapshot\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


@router.post("/relatorios")
def submit_report(
    clientName: Optional[str] = Form(None),
    technicianName: Optional[str] = Form(None),
    errorDate: Optional[str] = Form(None),
    reportText: Optional[str] = Form(None),
    databaseSavedOnPC: Optional[str] = Form(None),
    mediaFile: Optional[UploadFile] = File(None),
    zipFile: Optional[UploadFile] = File(None),
    principal: Optional[Principal] = Depends(get_optional_principal),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    try:
        form = {
            "clientName": clientName,
            "technicianName": technicianName,
            "errorDate": errorDate,
            "reportText": reportText,
            "databaseSavedOnPC": databaseSavedOnPC,
            "mediaFile": _read_upload(mediaFile),
            "zipFile": _read_upload(zipFile),
        }
        return _submission_response(lifecycle.submit(form, principal))
    except Exception:
        return _internal_error()


@router.get("/relatorios")
def list_reports(
    principal: Principal = Depends(get_current_principal),
    store: ReportStore = Depends(get_report_store),
):
    try:
        reports = store.list_reports()
    except ReportError as exc:
        _raise_for(exc)
    return {"relatorios": [report.model_dump(mode="json") for report in reports]}


@router.get("/relatorios/stream")
def stream_reports(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    store: ReportStore = Depends(get_report_store),
    settings: Settings = Depends(get_settings),
):
    try:
        subscription = store.subscribe()
    except ReportError as exc:
        _raise_for(exc)

    async def event_generator():
        try:
            yield _sse(subscription.initial)
            while not subscription.cancelled:
                if await request.is_disconnected():
                    break
                snapshot = await subscription.wait(settings.LIVE_QUERY_KEEPALIVE_SECONDS)
                if snapshot is None:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse(snapshot)
        finally:
            subscription.cancel()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/relatorios/{report_id}")
def get_report(
    report_id: str,
    principal: Principal = Depends(get_current_principal),
    store: ReportStore = Depends(get_report_store),
):
    try:
        return store.get(report_id).model_dump(mode="json")
    except ReportError as exc:
        _raise_for(exc)


@router.patch("/relatorios/{report_id}")
def edit_report(
    report_id: str,
    payload: ReportUpdate,
    principal: Principal = Depends(get_current_principal),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    try:
        outcome = lifecycle.edit(report_id, payload.model_dump(exclude_unset=True), principal)
    except ValidationFailed as exc:
        _raise_for(exc)
    return _mutation_response(outcome)


@router.post("/relatorios/{report_id}/status")
def toggle_report_status(
    report_id: str,
    principal: Principal = Depends(get_current_principal),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    return _mutation_response(lifecycle.toggle_status(report_id, principal))


@router.delete("/relatorios/{report_id}")
def delete_report(
    report_id: str,
    principal: Principal = Depends(get_current_principal),
    lifecycle: ReportLifecycle = Depends(get_lifecycle),
):
    return _mutation_response(lifecycle.delete(report_id, principal))


@router.get("/relatorios/{report_id}/export.txt")
def export_report(
    report_id: str,
    principal: Principal = Depends(get_current_principal),
    store: ReportStore = Depends(get_report_store),
):
    try:
        report = store.get(report_id)
    except ReportError as exc:
        _raise_for(exc)
    return PlainTextResponse(
        render_report_text(report),
        headers={"Content-Disposition": f'attachment; filename="{export_filename(report)}"'},
    )
