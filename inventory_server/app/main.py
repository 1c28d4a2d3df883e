from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import psycopg
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.auth import router as auth_router
from .routers.products import router as products_router
from .routers.inventory import router as inventory_router
from .routers.sales import router as sales_router
from .routers.warehouses import router as warehouses_router
from .routers.size_codes import router as size_codes_router
from .routers.stock_movements import router as stock_movements_router
from .routers.dashboard import router as dashboard_router
from .config import settings
from .db import close_pool, get_conn
from .logs import json_log
from . import durability

app = FastAPI(title="Inventory Server API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)
SERVICE_NAME = "inventory-server"


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _with_error(content: dict, exc: Exception) -> dict:
    if settings.is_local:
        content["error"] = str(exc)
    return content


# Map common DB constraint/cast errors to 4xx so clients get actionable responses
# instead of generic 500s.
@app.exception_handler(pg_errors.InvalidTextRepresentation)
def _invalid_text_representation(_req: Request, exc: Exception):
    # e.g. a malformed uuid in a path parameter
    return JSONResponse(status_code=400, content=_with_error({"detail": "invalid value"}, exc))


@app.exception_handler(pg_errors.ForeignKeyViolation)
def _foreign_key_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content=_with_error({"detail": "invalid reference"}, exc))


@app.exception_handler(pg_errors.UniqueViolation)
def _unique_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=409, content=_with_error({"detail": "conflict"}, exc))


@app.exception_handler(pg_errors.CheckViolation)
def _check_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content=_with_error({"detail": "constraint violation"}, exc))


@app.exception_handler(psycopg.OperationalError)
def _store_unavailable(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log("error", "db.unavailable", request_id=rid, path=req.url.path, error=str(exc))
    return JSONResponse(
        status_code=503,
        content=_with_error({"detail": "store unavailable", "request_id": rid}, exc),
    )


@app.exception_handler(psycopg.Error)
def _store_error(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log("error", "db.error", request_id=rid, path=req.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content=_with_error({"detail": "internal error", "request_id": rid}, exc),
    )


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.is_local and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(StarletteHTTPException)
def _http_exception(req: Request, exc: StarletteHTTPException):
    content = {"detail": exc.detail}
    if exc.status_code >= 500:
        content["request_id"] = _current_request_id(req)
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    return JSONResponse(
        status_code=500,
        content=_with_error({"detail": "internal error", "request_id": rid}, exc),
    )

# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=int((time.time() - started) * 1000),
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path != "/health":
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=int((time.time() - started) * 1000),
        )
    return response

# POS and admin UIs are served from other origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "Idempotent-Replayed"],
)
app.include_router(auth_router)
app.include_router(products_router)
app.include_router(inventory_router)
app.include_router(sales_router)
app.include_router(warehouses_router)
app.include_router(size_codes_router)
app.include_router(stock_movements_router)
app.include_router(dashboard_router)


@app.on_event("startup")
def _startup():
    for problem in settings.validate():
        json_log("error" if settings.is_production else "warning", "startup.config_invalid", env=settings.env, problem=problem)
    if not settings.session_secret and not settings.is_production:
        json_log("warning", "startup.ephemeral_session_secret", env=settings.env)
    json_log("info", "startup.ready", env=settings.env, version=settings.api_version)


@app.on_event("shutdown")
def _shutdown():
    durability.shutdown()
    close_pool()


def _db_health():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.get("/health")
def health(req: Request):
    return {
        "status": "ok",
        "ts": datetime.now(timezone.utc).isoformat(),
        "env": settings.env,
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "request_id": _current_request_id(req),
    }


@app.get("/health/ready")
def health_ready(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    if not ok:
        content = {
            "status": "degraded",
            "env": settings.env,
            "db": "down",
            "service": SERVICE_NAME,
            "version": settings.api_version,
            "request_id": request_id,
        }
        if settings.is_local:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return {
        "status": "ready",
        "env": settings.env,
        "db": "ok",
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "request_id": request_id,
    }


@app.get("/meta")
def meta():
    return {
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "env": settings.env,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }
