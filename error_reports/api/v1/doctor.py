import logging
import os

from fastapi import APIRouter, Depends

from error_reports.core.config import Settings, get_settings
from error_reports.core.error_emitter import PERMISSION_ERROR, get_error_emitter
from error_reports.core.firebase import firebase_configured

router = APIRouter()
logger = logging.getLogger("error_reports.doctor")


@router.get("/doctor")
def doctor(settings: Settings = Depends(get_settings)):
    app_id_ok = bool(settings.APP_ID)
    storage_ok = bool(os.getenv("GCS_BUCKET") or os.getenv("NEXT_PUBLIC_FIREBASE_STORAGE_BUCKET"))
    local_storage = os.getenv("LOCAL_STORAGE", "0") == "1"
    firebase_ok = firebase_configured()

    overall = all([app_id_ok, storage_ok or local_storage, firebase_ok])
    if not overall:
        logger.warning("doctor found missing configuration")
    return {
        "status": "OK" if overall else "WARN",
        "app_id": "OK" if app_id_ok else "ERROR",
        "storage": "OK" if storage_ok else ("LOCAL" if local_storage else "ERROR"),
        "auth": "OK" if firebase_ok else "ERROR",
        "second_attachment": settings.SECOND_ATTACHMENT_MODE,
        "max_attachment_bytes": settings.MAX_ATTACHMENT_BYTES,
        "permission_listeners": get_error_emitter().listener_count(PERMISSION_ERROR),
        "cors": "OK" if settings.BACKEND_CORS_ORIGINS else "ERROR",
    }
