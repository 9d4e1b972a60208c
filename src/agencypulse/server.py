from __future__ import annotations

import logging
import time
import uuid

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from . import api_crud, db
from .api_crud import get_current_user, require_master, router as crud_router
from .agents import ImportAgent

MAX_UPLOAD_BYTES = 20 * 1024 * 1024

ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    413: "payload_too_large",
    422: "validation_error",
    429: "rate_limited",
    500: "internal_error",
}


def _rate_key(request: Request) -> str:
    """Limit per signed-in user, falling back to the client address."""
    email = get_current_user(request)
    return f"user:{email}" if email else f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=_rate_key)
logger = logging.getLogger("agencypulse.api")

app = FastAPI(title="Agency Pulse API", version="0.4.0")
app.state.limiter = limiter


def _envelope(request: Request, status_code: int, message: str, detail: object) -> JSONResponse:
    """Every error body carries ``detail`` plus a machine-readable ``error`` block."""
    rid = getattr(request.state, "request_id", "") or request.headers.get("X-Request-ID", "")
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error": {"code": ERROR_CODES.get(status_code, "http_error"), "message": message, "request_id": rid},
        },
    )


@app.exception_handler(RateLimitExceeded)
async def _on_rate_limit(request: Request, _: RateLimitExceeded) -> JSONResponse:
    return _envelope(request, 429, "Too many requests", "Too many requests")


@app.exception_handler(HTTPException)
async def _on_http_error(request: Request, exc: HTTPException) -> JSONResponse:
    message = "Request validation failed" if isinstance(exc.detail, list) else str(exc.detail)
    return _envelope(request, exc.status_code, message, exc.detail)


@app.exception_handler(RequestValidationError)
async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{k: v for k, v in err.items() if k not in ("ctx", "url")} for err in exc.errors()]
    return _envelope(request, 422, "Request validation failed", errors)


@app.exception_handler(Exception)
async def _on_unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope(request, 500, "Internal server error", "Internal server error")


@app.middleware("http")
async def _trace_requests(request: Request, call_next):
    request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    logger.info(
        "%s %s %s %.1fms rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000.0,
        request.state.request_id,
    )
    return response


@app.on_event("startup")
def _create_tables():
    try:
        db.init_db(api_crud.DB_PATH)
    except Exception:
        logger.exception("Could not initialize %s; database endpoints will fail", api_crud.DB_PATH)


app.add_middleware(
    CORSMiddleware,
    allow_origins=api_crud.settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(crud_router)


@app.get("/")
def root():
    return {"ok": True}


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/api/entries/import")
@limiter.limit("20/minute")
async def import_entries(request: Request, file: UploadFile = File(...)):
    """Import a time-tracking export.

    The new batch replaces stored entries inside its own date span; unknown
    performers and workspaces get default profiles.
    """
    require_master(request)
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Export too large")
    text = content.decode("utf-8-sig", errors="replace")

    conn = api_crud._conn()
    try:
        outcome = ImportAgent().run(conn, text)
    finally:
        conn.close()
    return outcome
