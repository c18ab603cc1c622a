import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# .env is loaded from the project root wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlmodel import Session

from app.api.ingredients import router as ingredients_router
from app.api.storage import router as storage_router
from app.core.config import is_inference_configured, settings
from app.core.database import engine, init_db
from app.core.errors import TummyError
from app.core.rate_limit import limiter
from app.core.security import token_subject
from app.logging import setup_logging
from app.models import ErrorLog
from app.services.image_compression import ImageTranscoder
from app.services.inference import build_provider
from app.services.storage import ObjectStore

setup_logging(level=settings.log_level)
log = logging.getLogger("tummy")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if not is_inference_configured(settings):
        log.warning("INFERENCE_PROVIDER=%s but no OPEN_ROUTER_KEY set; analyze requests will fail", settings.inference_provider)
    app.state.object_store = ObjectStore.from_settings(settings)
    app.state.provider = build_provider(settings)
    app.state.transcoder = ImageTranscoder(
        max_width=settings.compression_max_dimension,
        max_height=settings.compression_max_dimension,
        quality=settings.compression_quality,
        target_bytes=settings.compression_target_kb * 1024,
    )
    log.info(
        "Startup: environment=%s bucket=%s provider=%s",
        settings.environment,
        settings.s3_bucket_name,
        app.state.provider.name,
    )
    yield


app = FastAPI(
    title="Tummy API",
    description="Food photo analysis: upload, review, commit or decline, browse history",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str, extras: dict | None = None) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    if extras:
        body.update(extras)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(TummyError)
def tummy_error_handler(request: Request, exc: TummyError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    else:
        log.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    return _error_response(request, exc.status_code, exc.detail, exc.extras())


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log.warning("Rate limit exceeded: path=%s limit=%s", request.url.path, exc.detail)
    return _error_response(request, 429, "Too many requests. Please wait a minute.")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


def _validation_error_message(exc: RequestValidationError) -> str:
    errs = exc.errors()
    if not errs:
        return "Invalid request."
    first = errs[0]
    loc = [str(p) for p in (first.get("loc") or []) if p not in ("body", "query", "path")]
    field = loc[-1] if loc else None
    msg = first.get("msg") or "Invalid request."
    return f"{field}: {msg}" if field else msg


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    log.info("Request validation error (422): path=%s method=%s", request.url.path, request.method)
    return _error_response(request, 422, _validation_error_message(exc))


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def _user_id_from_request(request: Request) -> str | None:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        return None
    return token_subject(auth[7:].strip())


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=exc)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                user_id=_user_id_from_request(request),
                request_id=getattr(request.state, "request_id", None),
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace="".join(traceback.format_exception(exc))[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "Unexpected server error.")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(ingredients_router)
app.include_router(storage_router)


@app.get("/health")
def health(request: Request):
    try:
        with Session(engine) as db:
            db.exec(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        log.warning("Health check: database unreachable: %s", e)
        database = "unavailable"
    provider = getattr(request.app.state, "provider", None)
    return {
        "status": "ok" if database == "ok" else "degraded",
        "inferenceProvider": provider.name if provider else settings.inference_provider,
        "database": database,
    }
