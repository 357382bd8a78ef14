import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from error_reports.api.v1.diagnostics import router as diagnostics_router
from error_reports.api.v1.doctor import router as doctor_router
from error_reports.api.v1.reports import router as reports_router
from error_reports.core.config import settings
from error_reports.core.error_emitter import PERMISSION_ERROR, get_error_emitter, log_permission_error
from error_reports.db import models
from error_reports.db.session import engine

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("error_reports")

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Relatorio de Erros do Sistema - envio e acompanhamento de erros de clientes",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_listeners: list = []


@app.on_event("startup")
def on_startup() -> None:
    models.Base.metadata.create_all(bind=engine)
    if not _listeners:
        _listeners.append(get_error_emitter().on(PERMISSION_ERROR, log_permission_error))
    if not settings.APP_ID:
        logger.warning("APP_ID nao configurado; criacao de relatorios vai falhar.")
    if settings.ENV.lower() == "production":
        if settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            logger.warning("SQLALCHEMY_DATABASE_URI aponta para SQLite em producao.")
        if not settings.REPORT_EDITOR_UIDS:
            logger.warning("REPORT_EDITOR_UIDS vazio: qualquer usuario autenticado pode editar e excluir.")


@app.on_event("shutdown")
def on_shutdown() -> None:
    while _listeners:
        _listeners.pop()()


app.include_router(reports_router, prefix="/api")
app.include_router(diagnostics_router, prefix="/api")
app.include_router(doctor_router, prefix="/api")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


@app.get("/api/health")
def health():
    return {"status": "ok"}
