import base64
import json
import os
from functools import lru_cache

import firebase_admin
from firebase_admin import credentials


def _load_credentials():
    credentials_json = os.getenv("FIREBASE_CREDENTIALS_JSON")
    credentials_b64 = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY_BASE64")
    credentials_path = os.getenv("FIREBASE_CREDENTIALS_PATH")
    if credentials_json:
        return credentials.Certificate(json.loads(credentials_json))
    if credentials_b64:
        decoded = base64.b64decode(credentials_b64).decode("utf-8")
        return credentials.Certificate(json.loads(decoded))
    if credentials_path:
        return credentials.Certificate(credentials_path)
    return credentials.ApplicationDefault()


def firebase_configured() -> bool:
    return any(
        os.getenv(name)
        for name in (
            "FIREBASE_CREDENTIALS_JSON",
            "FIREBASE_SERVICE_ACCOUNT_KEY_BASE64",
            "FIREBASE_CREDENTIALS_PATH",
        )
    )


@lru_cache
def get_firebase_app():
    if firebase_admin._apps:
        return firebase_admin.get_app()
    app_options = {}
    project_id = os.getenv("FIREBASE_PROJECT_ID")
    if project_id:
        app_options["projectId"] = project_id
    bucket = os.getenv("GCS_BUCKET") or os.getenv("NEXT_PUBLIC_FIREBASE_STORAGE_BUCKET")
    if bucket:
        app_options["storageBucket"] = bucket
    cred = _load_credentials()
    return firebase_admin.initialize_app(cred, app_options or None)
