from __future__ import annotations

import logging
import secrets
import time
from fastapi import Cookie, FastAPI, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
import httpx
from redis.exceptions import RedisError
from sqlalchemy.orm import Session
from sqlalchemy import text

from app.bot import handle_update
from app.cache import legacy_redis_client
from app.db import Base, engine, get_db
from app.config import settings, setup_logging
from app.errors import NotFoundError, UnauthorizedError, register_exception_handlers
from app.expiry import classify_expiring
from app.importer import migrate_from_legacy
from app.schemas import (
    AckResponse,
    CleanupOut,
    ExpiringOut,
    ImportReportOut,
    LoginRequest,
    MappingIn,
    MappingOut,
    MappingPageOut,
)
from app.service import (
    create_mapping,
    delete_mapping,
    get_active_target,
    get_mapping,
    list_mappings,
    update_mapping,
)
from app.worker import cleanup_expired_once

setup_logging()
logger = logging.getLogger(__name__)

AUTH_COOKIE = "token"
AUTH_COOKIE_MAX_AGE = 86400

app = FastAPI(title="Short Link Service")
register_exception_handlers(app)


@app.on_event("startup")
def on_startup() -> None:
    """
    Wait for the database to be reachable before creating tables.
    """
    max_attempts = 30
    sleep_seconds = 1

    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            last_err = None
            break
        except Exception as e:
            last_err = e
            time.sleep(sleep_seconds)

    if last_err is not None:
        raise RuntimeError(f"Database not reachable after {max_attempts} attempts") from last_err

    Base.metadata.create_all(bind=engine)


def get_legacy_source():
    client = legacy_redis_client()
    try:
        yield client
    finally:
        client.close()


def get_bot_client():
    with httpx.Client(timeout=30) as client:
        yield client


def _same_secret(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode(), expected.encode())


def require_auth(token: str | None = Cookie(default=None)) -> None:
    if not settings.admin_password or not token or not _same_secret(token, settings.admin_password):
        raise UnauthorizedError("Unauthorized")


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
    return RedirectResponse(url="/admin.html", status_code=302)


@app.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "service": "short-links",
        "base_url": settings.base_url,
    }


@app.post("/api/login", response_model=AckResponse)
def login(payload: LoginRequest) -> JSONResponse:
    if not settings.admin_password or not _same_secret(payload.password, settings.admin_password):
        raise UnauthorizedError("Wrong password")

    resp = JSONResponse({"success": True})
    resp.set_cookie(
        AUTH_COOKIE,
        payload.password,
        max_age=AUTH_COOKIE_MAX_AGE,
        httponly=True,
        samesite="strict",
    )
    return resp


@app.post("/api/logout", response_model=AckResponse)
def logout() -> JSONResponse:
    resp = JSONResponse({"success": True})
    resp.delete_cookie(AUTH_COOKIE, httponly=True, samesite="strict")
    return resp


@app.get("/api/mappings", response_model=MappingPageOut, dependencies=[Depends(require_auth)])
def mappings_page(page: int = 1, pageSize: int = 10, db: Session = Depends(get_db)) -> MappingPageOut:
    result = list_mappings(db, page=page, page_size=pageSize)
    return MappingPageOut(
        mappings=[MappingOut.model_validate(m) for m in result.mappings],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@app.post("/api/mappings", response_model=AckResponse, dependencies=[Depends(require_auth)])
def create_one(payload: MappingIn, db: Session = Depends(get_db)) -> AckResponse:
    create_mapping(
        db,
        payload.path,
        payload.target,
        name=payload.name,
        expiry=payload.expiry,
        enabled=payload.enabled,
        is_wechat=payload.is_wechat,
        qr_code_data=payload.qr_code_data,
    )
    return AckResponse()


@app.get("/api/mappings/expiring", response_model=ExpiringOut, dependencies=[Depends(require_auth)])
def expiring(db: Session = Depends(get_db)) -> ExpiringOut:
    report = classify_expiring(db)
    return ExpiringOut(
        expired=[MappingOut.model_validate(m) for m in report.expired],
        expiring=[MappingOut.model_validate(m) for m in report.expiring],
    )


@app.get("/api/mappings/{path:path}", response_model=MappingOut, dependencies=[Depends(require_auth)])
def get_one(path: str, db: Session = Depends(get_db)) -> MappingOut:
    return MappingOut.model_validate(get_mapping(db, path))


@app.put("/api/mappings/{path:path}", response_model=AckResponse, dependencies=[Depends(require_auth)])
def update_one(path: str, payload: MappingIn, db: Session = Depends(get_db)) -> AckResponse:
    update_mapping(
        db,
        path,
        payload.path,
        payload.target,
        name=payload.name,
        expiry=payload.expiry,
        enabled=payload.enabled,
        is_wechat=payload.is_wechat,
        qr_code_data=payload.qr_code_data,
    )
    return AckResponse()


@app.delete("/api/mappings/{path:path}", response_model=AckResponse, dependencies=[Depends(require_auth)])
def delete_one(path: str, db: Session = Depends(get_db)) -> AckResponse:
    delete_mapping(db, path)
    return AckResponse()


@app.post("/api/migrate", response_model=ImportReportOut, dependencies=[Depends(require_auth)])
def migrate(db: Session = Depends(get_db), source=Depends(get_legacy_source)):
    try:
        report = migrate_from_legacy(db, source)
    except RedisError as e:
        logger.error("legacy import aborted: %s", e)
        return JSONResponse(status_code=500, content={"success": False, "message": str(e)})
    return ImportReportOut(imported=report.imported, skipped=report.skipped, failed=report.failed)


@app.post("/api/cleanup", response_model=CleanupOut, dependencies=[Depends(require_auth)])
def cleanup(db: Session = Depends(get_db)) -> CleanupOut:
    return CleanupOut(deleted=cleanup_expired_once(db))


def _resolve(db: Session, path: str) -> RedirectResponse:
    target = get_active_target(db, path)
    if target is None:
        raise NotFoundError("Not found")
    return RedirectResponse(url=target, status_code=302)


def _is_bot_token(token: str) -> bool:
    return bool(settings.tg_bot_token) and _same_secret(token, settings.tg_bot_token)


@app.post("/bot{token}")
def bot_webhook(
    token: str,
    update_body: dict,
    db: Session = Depends(get_db),
    client: httpx.Client = Depends(get_bot_client),
) -> dict:
    if not _is_bot_token(token):
        raise NotFoundError("Not found")
    handle_update(db, update_body, client)
    return {"ok": True}


@app.get("/bot{token}")
def bot_webhook_check(token: str, request: Request, db: Session = Depends(get_db)):
    # Not the webhook: "bot..." is an ordinary short path.
    if not _is_bot_token(token):
        return _resolve(db, f"bot{token}")
    return PlainTextResponse(request.query_params.get("hub.challenge") or "OK")


@app.get("/{path:path}")
def redirect(path: str, db: Session = Depends(get_db)) -> RedirectResponse:
    """
    Redirect hot path: a single point lookup filtered on enabled/expiry.
    """
    return _resolve(db, path)
