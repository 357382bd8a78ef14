from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from error_reports.core.config import SECOND_ATTACHMENT_ATTESTATION, Settings
from error_reports.core.errors import (
    FILE_TOO_LARGE,
    REQUIRED_FIELD_MISSING,
    UNSUPPORTED_MEDIA_TYPE,
    Violation,
)
from error_reports.reports.schemas import (
    ATTESTATION_NO,
    ATTESTATION_VALUES,
    EDITABLE_FIELDS,
    ArchiveAttachment,
    AttachmentFile,
    BooleanAttestation,
    ReportSubmission,
)

REQUIRED_TEXT_FIELDS = {
    "clientName": "Nome do cliente é obrigatório.",
    "technicianName": "Nome do técnico é obrigatório.",
    "errorDate": "Data do erro é obrigatória.",
    "reportText": "O relatório detalhado é obrigatório.",
}
# reportText keeps its whitespace, the rest is stripped.
VERBATIM_FIELDS = {"reportText"}

MEDIA_TYPE_MESSAGE = "Apenas formatos de imagem e vídeo são aceitos."
ARCHIVE_TYPE_MESSAGE = "Apenas arquivos .zip ou .rar são aceitos."
ATTESTATION_MESSAGE = "Informe se o banco de dados foi salvo no PC (sim ou não)."
NOT_EDITABLE_MESSAGE = "Campo não editável."
EMPTY_PATCH_MESSAGE = "Nenhum campo para atualizar."


@dataclass
class ValidationResult:
    payload: Any = None
    violations: Dict[str, List[Violation]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.violations

    @property
    def errors(self) -> Dict[str, List[str]]:
        return {name: [v.message for v in items] for name, items in self.violations.items()}

    def codes(self, name: str) -> List[str]:
        return [v.code for v in self.violations.get(name, [])]


def _append_violation(violations: Dict[str, List[Violation]], name: str, code: str, message: str) -> None:
    violations.setdefault(name, []).append(Violation(code=code, message=message))


def _clean_text(name: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    if not text.strip():
        return None
    return text if name in VERBATIM_FIELDS else text.strip()


def _size_message(max_bytes: int) -> str:
    mib = max_bytes / (1024 * 1024)
    label = f"{int(mib)}MB" if mib >= 1 and mib == int(mib) else f"{max_bytes} bytes"
    return f"O tamanho máximo do arquivo é {label}."


def _present_file(value: Any) -> Optional[AttachmentFile]:
    if not isinstance(value, AttachmentFile) or value.size == 0:
        return None
    return value


def _check_file(
    violations: Dict[str, List[Violation]],
    name: str,
    file: Optional[AttachmentFile],
    accepted_types: List[str],
    type_message: str,
    max_bytes: int,
) -> None:
    if file is None:
        return
    if file.size > max_bytes:
        _append_violation(violations, name, FILE_TOO_LARGE, _size_message(max_bytes))
    if (file.content_type or "").lower() not in {t.lower() for t in accepted_types}:
        _append_violation(violations, name, UNSUPPORTED_MEDIA_TYPE, type_message)


def normalize_attestation(value: Any) -> Optional[str]:
    if value is None:
        return None
    raw = str(value).strip().lower()
    if raw == "nao":
        return ATTESTATION_NO
    return raw if raw in ATTESTATION_VALUES else None


def validate_submission(form: Mapping[str, Any], settings: Settings) -> ValidationResult:
    """Check a raw submission without touching storage or the database.

    Every field is checked independently so all violations come back
    together, keyed by field name.
    """
    violations: Dict[str, List[Violation]] = {}
    cleaned: Dict[str, str] = {}
    for name, message in REQUIRED_TEXT_FIELDS.items():
        value = _clean_text(name, form.get(name))
        if value is None:
            _append_violation(violations, name, REQUIRED_FIELD_MISSING, message)
        else:
            cleaned[name] = value

    media_file = _present_file(form.get("mediaFile"))
    _check_file(
        violations,
        "mediaFile",
        media_file,
        settings.ACCEPTED_MEDIA_TYPES,
        MEDIA_TYPE_MESSAGE,
        settings.MAX_ATTACHMENT_BYTES,
    )

    second: ArchiveAttachment | BooleanAttestation | None
    if settings.SECOND_ATTACHMENT_MODE == SECOND_ATTACHMENT_ATTESTATION:
        answer = normalize_attestation(form.get("databaseSavedOnPC"))
        if answer is None:
            _append_violation(violations, "databaseSavedOnPC", REQUIRED_FIELD_MISSING, ATTESTATION_MESSAGE)
            second = None
        else:
            second = BooleanAttestation(answer=answer)
    else:
        zip_file = _present_file(form.get("zipFile"))
        _check_file(
            violations,
            "zipFile",
            zip_file,
            settings.ACCEPTED_ARCHIVE_TYPES,
            ARCHIVE_TYPE_MESSAGE,
            settings.MAX_ATTACHMENT_BYTES,
        )
        second = ArchiveAttachment(file=zip_file)

    if violations:
        return ValidationResult(violations=violations)
    return ValidationResult(
        payload=ReportSubmission(
            client_name=cleaned["clientName"],
            technician_name=cleaned["technicianName"],
            error_date=cleaned["errorDate"],
            report_text=cleaned["reportText"],
            media_file=media_file,
            second_attachment=second,
        )
    )


def validate_patch(fields: Mapping[str, Any], settings: Settings) -> ValidationResult:
    violations: Dict[str, List[Violation]] = {}
    cleaned: Dict[str, str] = {}
    editable = set(EDITABLE_FIELDS)
    if settings.SECOND_ATTACHMENT_MODE == SECOND_ATTACHMENT_ATTESTATION:
        editable.add("databaseSavedOnPC")

    for name, value in fields.items():
        if name not in editable:
            _append_violation(violations, name, "NotEditable", NOT_EDITABLE_MESSAGE)
            continue
        if name == "databaseSavedOnPC":
            answer = normalize_attestation(value)
            if answer is None:
                _append_violation(violations, name, REQUIRED_FIELD_MISSING, ATTESTATION_MESSAGE)
            else:
                cleaned[name] = answer
            continue
        text = _clean_text(name, value)
        if text is None:
            _append_violation(violations, name, REQUIRED_FIELD_MISSING, REQUIRED_TEXT_FIELDS[name])
        else:
            cleaned[name] = text

    if not fields:
        _append_violation(violations, "__all__", REQUIRED_FIELD_MISSING, EMPTY_PATCH_MESSAGE)
    if violations:
        return ValidationResult(violations=violations)
    return ValidationResult(payload=cleaned)
