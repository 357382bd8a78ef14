from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, field_validator

from error_reports.db import models

ReportStatus = Literal["open", "concluded"]

ATTESTATION_YES = "sim"
ATTESTATION_NO = "não"
ATTESTATION_VALUES = (ATTESTATION_YES, ATTESTATION_NO)

EDITABLE_FIELDS = ("clientName", "technicianName", "errorDate", "reportText")


@dataclass(frozen=True)
class AttachmentFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ArchiveAttachment:
    file: Optional[AttachmentFile]


@dataclass(frozen=True)
class BooleanAttestation:
    answer: str


SecondAttachment = ArchiveAttachment | BooleanAttestation


@dataclass(frozen=True)
class ReportSubmission:
    """Normalized payload produced by the validator."""

    client_name: str
    technician_name: str
    error_date: str
    report_text: str
    media_file: Optional[AttachmentFile]
    second_attachment: SecondAttachment


class Report(BaseModel):
    id: str
    clientName: str
    technicianName: str
    errorDate: str
    reportText: str
    mediaUrl: Optional[str] = None
    zipUrl: Optional[str] = None
    databaseSavedOnPC: Optional[str] = None
    reportedByUserId: str
    generatedAt: datetime
    status: ReportStatus

    model_config = {"frozen": True}

    @field_validator("generatedAt")
    @classmethod
    def generated_at_as_utc(cls, value: datetime) -> datetime:
        # The table keeps naive UTC stamps.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ReportUpdate(BaseModel):
    clientName: Optional[str] = None
    technicianName: Optional[str] = None
    errorDate: Optional[str] = None
    reportText: Optional[str] = None
    databaseSavedOnPC: Optional[str] = None

    model_config = {"extra": "forbid"}


def to_report(row: models.ErrorReport) -> Report:
    return Report(
        id=row.id,
        clientName=row.client_name,
        technicianName=row.technician_name,
        errorDate=row.error_date,
        reportText=row.report_text,
        mediaUrl=row.media_url,
        zipUrl=row.zip_url,
        databaseSavedOnPC=row.database_saved_on_pc,
        reportedByUserId=row.reported_by_user_id,
        generatedAt=row.generated_at,
        status=row.status,
    )
