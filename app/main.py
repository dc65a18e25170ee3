import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# .env sempre da raiz do projeto, de onde quer que o uvicorn seja iniciado
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlmodel import Session, select
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.admin import coupons_router, router as admin_router
from app.api.checkout import router as checkout_router
from app.core.clock import utcnow
from app.core.config import is_efi_configured, settings
from app.core.database import engine, init_db
from app.core.errors import CheckoutError
from app.core.rate_limit import client_ip, limiter
from app.logging import setup_logging
from app.models import ErrorLog, PaymentMethod, PaymentSession, PaymentStatus, SecurityLog
from app.services.pix_watch import PixWatchRegistry
from app.services.processor import get_processor

setup_logging(level=settings.log_level)
log = logging.getLogger("checkout")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


def _resume_pix_watches(registry: PixWatchRegistry) -> int:
    """Retoma o acompanhamento dos Pix em aberto (PENDING ou PROCESSING) que ainda não venceram."""
    with Session(engine) as db:
        stmt = (
            select(PaymentSession)
            .where(PaymentSession.payment_method == PaymentMethod.PIX)
            .where(PaymentSession.status.in_((PaymentStatus.PENDING, PaymentStatus.PROCESSING)))
            .where(PaymentSession.pix_expires_at > utcnow())
        )
        pending = db.exec(stmt).all()
    for session in pending:
        registry.start(session)
    return len(pending)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info("Processador: %s (Efí configurado: %s)", settings.processor, "sim" if is_efi_configured() else "não")
    registry = None
    if settings.pix_watch_enabled:
        registry = PixWatchRegistry(
            get_processor,
            lambda: Session(engine),
            poll_interval=settings.pix_poll_interval_seconds,
            tick=settings.pix_countdown_tick_seconds,
        )
        resumed = _resume_pix_watches(registry)
        if resumed:
            log.info("%s acompanhamento(s) Pix retomado(s)", resumed)
    app.state.pix_watches = registry
    yield
    if registry is not None:
        await registry.shutdown()


app = FastAPI(
    title="Checkout API",
    description="Checkout de assinatura: Pix com desconto, cartão parcelado e cupons",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str, **extra) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code, **extra}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(CheckoutError)
def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    if exc.status_code >= 500:
        log.warning("%s em %s: %s", exc.reason, request.url.path, exc.message)
    body = exc.to_dict()
    rid = getattr(request.state, "request_id", None)
    if rid:
        body["request_id"] = rid
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.info("Requisição inválida: path=%s method=%s detail=%s", request.url.path, request.method, errs)
    errors = {}
    for err in errs:
        errors.setdefault(_field_name(err.get("loc") or []), err.get("msg") or "Valor inválido.")
    if len(errors) == 1:
        message = next(iter(errors.values()))
    else:
        message = "Dados inválidos: " + ", ".join(sorted(errors))
    return _error_response(request, 400, message, reason="ValidationFailed", errors=errors)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    try:
        with Session(engine) as db:
            db.add(SecurityLog(event="rate_limit", ip=client_ip(request), endpoint=request.url.path, detail="Rate limit exceeded"))
            db.commit()
    except Exception as e:
        log.warning("SecurityLog rate_limit write failed: %s", e)
    return _error_response(request, 429, "Muitas requisições. Aguarde um minuto.", reason="RateLimited", retryable=True)


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


# base do HTTPException do FastAPI; pega também 404/405 de rota gerados pelo Starlette
@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": detail, "status_code": exc.status_code, "request_id": getattr(request.state, "request_id", None)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=True)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "Erro inesperado no servidor.")


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
app.include_router(checkout_router)
app.include_router(admin_router)
app.include_router(coupons_router)


@app.get("/health")
def health():
    database = "ok"
    try:
        with Session(engine) as db:
            db.connection().execute(text("SELECT 1"))
    except Exception as e:
        log.warning("Health: banco indisponível: %s", e)
        database = "error"
    return {"status": "ok", "database": database, "processor": settings.processor, "efi_configured": is_efi_configured()}
