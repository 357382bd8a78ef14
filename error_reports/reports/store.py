import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, List, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from error_reports.core.config import Settings
from error_reports.core.errors import NotFound, PermissionDenied, PersistenceError
from error_reports.core.security import Principal, can_write
from error_reports.db import models
from error_reports.reports.live_query import LiveQueryFeed, Snapshot, Subscription, get_live_query_feed
from error_reports.reports.schemas import Report, to_report

logger = logging.getLogger("error_reports.store")

APP_ID_MISSING = "ID da aplicação Firebase não configurado no ambiente."

FIELD_COLUMNS = {
    "clientName": "client_name",
    "technicianName": "technician_name",
    "errorDate": "error_date",
    "reportText": "report_text",
    "mediaUrl": "media_url",
    "zipUrl": "zip_url",
    "databaseSavedOnPC": "database_saved_on_pc",
    "status": "status",
}
PATCHABLE_FIELDS = {"clientName", "technicianName", "errorDate", "reportText", "databaseSavedOnPC", "status"}
STATUSES = {models.STATUS_OPEN, models.STATUS_CONCLUDED}

# Serializes generatedAt assignment so it stays strictly increasing.
_create_lock = threading.Lock()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _backend_message(exc: SQLAlchemyError) -> str:
    return str(getattr(exc, "orig", None) or exc)


class ReportStore:
    """Error reports of one application, kept in the ``error_reports`` table.

    Every committed write republishes the ordered collection to the live
    query feed, so open subscriptions see creates, patches and deletes
    without asking again.
    """

    def __init__(self, db: Session, settings: Settings, feed: Optional[LiveQueryFeed] = None) -> None:
        self.db = db
        self.settings = settings
        self.feed = feed or get_live_query_feed()

    @property
    def collection_path(self) -> str:
        if not self.settings.APP_ID:
            raise PersistenceError(APP_ID_MISSING)
        return self.settings.collection_path

    def document_path(self, report_id: str) -> str:
        return f"{self.collection_path}/{report_id}"

    def _query(self):
        return self.db.query(models.ErrorReport).filter(
            models.ErrorReport.collection_path == self.collection_path
        )

    def _load_snapshot(self) -> Snapshot:
        rows = self._query().order_by(models.ErrorReport.generated_at.desc()).all()
        return tuple(to_report(row) for row in rows)

    def _publish(self) -> None:
        try:
            self.feed.publish(self.collection_path, self._load_snapshot)
        except SQLAlchemyError:
            # The write is already committed; viewers catch up on the next publish.
            logger.exception("live query publish failed path=%s", self.collection_path)

    def _rollback(self, exc: SQLAlchemyError, action: str) -> PersistenceError:
        self.db.rollback()
        message = _backend_message(exc)
        logger.error("%s failed path=%s error=%s", action, self.collection_path, message)
        return PersistenceError(message)

    def _get_row(self, report_id: str) -> models.ErrorReport:
        try:
            row = self._query().filter(models.ErrorReport.id == report_id).first()
        except SQLAlchemyError as exc:
            raise self._rollback(exc, "read") from exc
        if not row:
            raise NotFound(f"Relatório não encontrado: {report_id}")
        return row

    def ensure_write(self, principal: Optional[Principal], report_id: str, operation: str) -> None:
        if not can_write(principal, self.settings):
            uid = principal.uid if principal else None
            logger.info("write denied operation=%s id=%s uid=%s", operation, report_id, uid)
            raise PermissionDenied(f"Permissão negada para {operation} em {self.document_path(report_id)}")

    def list_reports(self) -> List[Report]:
        try:
            return list(self._load_snapshot())
        except SQLAlchemyError as exc:
            raise self._rollback(exc, "list") from exc

    def get(self, report_id: str) -> Report:
        return to_report(self._get_row(report_id))

    def create(self, fields: Mapping[str, Any], principal: Principal) -> str:
        return self.create_report(fields, principal).id

    def create_report(self, fields: Mapping[str, Any], principal: Principal) -> Report:
        """Inserts the report and returns it as committed, without reading it back."""
        path = self.collection_path
        row = models.ErrorReport(
            id=str(uuid.uuid4()),
            collection_path=path,
            client_name=fields["clientName"],
            technician_name=fields["technicianName"],
            error_date=fields["errorDate"],
            report_text=fields["reportText"],
            media_url=fields.get("mediaUrl"),
            zip_url=fields.get("zipUrl"),
            database_saved_on_pc=fields.get("databaseSavedOnPC"),
            reported_by_user_id=principal.uid,
            status=models.STATUS_OPEN,
        )
        with _create_lock:
            try:
                last = (
                    self.db.query(func.max(models.ErrorReport.generated_at))
                    .filter(models.ErrorReport.collection_path == path)
                    .scalar()
                )
                generated_at = _utcnow()
                if last is not None and generated_at <= last:
                    generated_at = last + timedelta(microseconds=1)
                row.generated_at = generated_at
                report = to_report(row)
                self.db.add(row)
                self.db.commit()
            except SQLAlchemyError as exc:
                raise self._rollback(exc, "create") from exc
        logger.info("report created id=%s uid=%s", report.id, principal.uid)
        self._publish()
        return report

    def patch(self, report_id: str, fields: Mapping[str, Any], principal: Optional[Principal]) -> Report:
        unknown = set(fields) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Campos nao editaveis: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in STATUSES:
            raise ValueError(f"Status invalido: {fields['status']}")
        self.ensure_write(principal, report_id, "update")
        row = self._get_row(report_id)
        for name, value in fields.items():
            setattr(row, FIELD_COLUMNS[name], value)
        report = to_report(row)
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._rollback(exc, "patch") from exc
        logger.info("report patched id=%s fields=%s", report_id, ",".join(sorted(fields)))
        self._publish()
        return report

    def delete(self, report_id: str, principal: Optional[Principal]) -> None:
        self.ensure_write(principal, report_id, "delete")
        row = self._get_row(report_id)
        try:
            self.db.delete(row)
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._rollback(exc, "delete") from exc
        logger.info("report deleted id=%s", report_id)
        self._publish()

    def subscribe(self) -> Subscription:
        path = self.collection_path
        try:
            return self.feed.subscribe(path, self._load_snapshot)
        except SQLAlchemyError as exc:
            raise self._rollback(exc, "subscribe") from exc

