from dataclasses import dataclass, field
from typing import Any, Optional


REQUIRED_FIELD_MISSING = "RequiredFieldMissing"
FILE_TOO_LARGE = "FileTooLarge"
UNSUPPORTED_MEDIA_TYPE = "UnsupportedMediaType"

OPERATION_CREATE = "create"
OPERATION_UPDATE = "update"
OPERATION_DELETE = "delete"


class ReportError(Exception):
    """Base class for failures the report pipeline reports to its callers."""

    kind = "unknown"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationPending(ReportError):
    kind = "authentication-pending"


class UploadFailed(ReportError):
    kind = "upload"


class PersistenceError(ReportError):
    kind = "persistence"


class NotFound(ReportError):
    kind = "not-found"


class PermissionDenied(ReportError):
    kind = "permission-denied"


class ValidationFailed(ReportError):
    kind = "validation"

    def __init__(self, errors: dict[str, list[str]], message: str = "Falha na validação. Verifique os campos.") -> None:
        super().__init__(message)
        self.errors = errors


class InvalidTransition(RuntimeError):
    pass


@dataclass(frozen=True)
class Violation:
    code: str
    message: str


@dataclass(frozen=True)
class OperationContext:
    path: str
    operation: str
    request_resource_data: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class ReportPermissionError:
    """Access denial published on the error channel for observers."""

    path: str
    operation: str
    message: str
    request_resource_data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "path": self.path,
            "operation": self.operation,
            "message": self.message,
        }
        if self.request_resource_data is not None:
            payload["requestResourceData"] = self.request_resource_data
        return payload


@dataclass(frozen=True)
class ClassifiedError:
    kind: str
    message: str
    context: OperationContext
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    @property
    def is_permission_error(self) -> bool:
        return self.kind == PermissionDenied.kind
