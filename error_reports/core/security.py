import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status
from firebase_admin import auth

from error_reports.core.config import Settings
from error_reports.core.firebase import get_firebase_app

logger = logging.getLogger("error_reports.auth")

AUTH_PENDING_DETAIL = "Autenticação pendente"


@dataclass(frozen=True)
class Principal:
    uid: str
    is_anonymous: bool = False
    email: Optional[str] = None


def can_write(principal: Optional[Principal], settings: Settings) -> bool:
    if principal is None:
        return False
    if not settings.REPORT_EDITOR_UIDS:
        return True
    return principal.uid in settings.REPORT_EDITOR_UIDS


def _extract_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def _verify_token(token: str) -> Principal:
    try:
        get_firebase_app()
        decoded = auth.verify_id_token(token)
    except Exception:
        logger.info("id token rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token invalido")
    provider = (decoded.get("firebase") or {}).get("sign_in_provider")
    return Principal(
        uid=decoded.get("uid") or decoded.get("sub"),
        is_anonymous=provider == "anonymous",
        email=decoded.get("email"),
    )


def get_optional_principal(request: Request) -> Optional[Principal]:
    """Principal for the request, or None while the client has not signed in yet."""
    token = _extract_bearer_token(request)
    if not token:
        return None
    return _verify_token(token)


def get_current_principal(request: Request) -> Principal:
    token = _extract_bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=AUTH_PENDING_DETAIL,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _verify_token(token)
