import logging
import threading
from collections import deque
from functools import lru_cache
from typing import Callable, Deque, Dict, List

from error_reports.core.config import settings
from error_reports.core.errors import (
    ClassifiedError,
    OperationContext,
    OPERATION_CREATE,
    OPERATION_DELETE,
    OPERATION_UPDATE,
    PermissionDenied,
    ReportError,
    ReportPermissionError,
)

PERMISSION_ERROR = "permission-error"

Listener = Callable[[ReportPermissionError], None]

logger = logging.getLogger("error_reports.permissions")


class ErrorEmitter:
    """Process-wide channel for classified failures.

    One side publishes (the classifier); any number of listeners subscribe
    with ``on`` and receive every event emitted afterwards. A listener that
    raises is logged and skipped, the remaining listeners still run.
    """

    def __init__(self, history_size: int = 50) -> None:
        self._listeners: Dict[str, List[Listener]] = {}
        self._history: Deque[ReportPermissionError] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(event, [])
                if listener in listeners:
                    listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: str, payload: ReportPermissionError) -> int:
        with self._lock:
            listeners = list(self._listeners.get(event, []))
            if event == PERMISSION_ERROR:
                self._history.append(payload)
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("listener failed event=%s", event)
        return len(listeners)

    def recent(self) -> List[ReportPermissionError]:
        with self._lock:
            return list(self._history)

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners.get(event, []))


@lru_cache(maxsize=1)
def get_error_emitter() -> ErrorEmitter:
    return ErrorEmitter(history_size=settings.ERROR_HISTORY_SIZE)


def _permission_message(context: OperationContext) -> str:
    verbs = {
        OPERATION_CREATE: "criar",
        OPERATION_UPDATE: "atualizar",
        OPERATION_DELETE: "excluir",
    }
    verb = verbs.get(context.operation, context.operation)
    return f"Permissao insuficiente para {verb} o documento {context.path}"


def classify(
    failure: BaseException,
    context: OperationContext,
    emitter: ErrorEmitter | None = None,
) -> ClassifiedError:
    """Classify a store failure and republish access denials out-of-band.

    The caller keeps handling ``failure`` the way it wants; this only adds
    the classified detail to the shared channel when access was denied.
    """
    if isinstance(failure, PermissionDenied):
        data = context.request_resource_data if context.operation != OPERATION_DELETE else None
        event = ReportPermissionError(
            path=context.path,
            operation=context.operation,
            message=_permission_message(context),
            request_resource_data=data,
        )
        (emitter or get_error_emitter()).emit(PERMISSION_ERROR, event)
        return ClassifiedError(kind=PermissionDenied.kind, message=event.message, context=context, cause=failure)
    if isinstance(failure, ReportError):
        return ClassifiedError(kind=failure.kind, message=failure.message, context=context, cause=failure)
    return ClassifiedError(kind="unknown", message=str(failure), context=context, cause=failure)


def log_permission_error(event: ReportPermissionError) -> None:
    logger.warning(
        "permission denied operation=%s path=%s data=%s",
        event.operation,
        event.path,
        event.request_resource_data,
    )
