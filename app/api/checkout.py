"""Rotas públicas do checkout: criação, validação de cupom, status, cancelamento e webhook."""
import logging

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_pix_watches, webhook_secret_matches
from app.core.clock import utcnow
from app.core.database import get_db
from app.core.errors import AuthenticationError, NotFound
from app.core.rate_limit import CHECKOUT_LIMIT, COUPON_LIMIT, client_ip, limiter
from app.models import PaymentMethod, PaymentSession, PaymentStatus, SecurityLog
from app.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    CouponSummary,
    CouponValidationRequest,
    CouponValidationResponse,
    PaymentStatusResponse,
    WebhookNotification,
)
from app.services.checkout import CheckoutCommand, CheckoutOrchestrator, CustomerData
from app.services.coupon import CouponRejection, CouponValidator
from app.services.pix_watch import PixWatchRegistry
from app.services.processor import CardData, PaymentProcessor, get_processor
from app.services.session_state import PaymentSessionStateMachine, TransitionResult, remaining_seconds

log = logging.getLogger("checkout")

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _command(body: CheckoutRequest) -> CheckoutCommand:
    card = None
    if body.credit_card is not None:
        address = body.credit_card.billing_address
        card = CardData(
            payment_token=body.credit_card.payment_token,
            billing_address=address.model_dump() if address else {},
        )
    c = body.customer
    return CheckoutCommand(
        customer=CustomerData(name=c.name, email=c.email, phone=c.phone, cpf=c.cpf, birth_date=c.birth_date),
        payment_method=body.payment_method,
        installments=body.installments,
        coupon_code=body.coupon_code,
        amount=body.amount,
        card=card,
    )


@router.post("", response_model=CheckoutResponse, status_code=201)
@limiter.limit(CHECKOUT_LIMIT)
async def create_checkout(
    request: Request,
    body: CheckoutRequest,
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
    watches: PixWatchRegistry | None = Depends(get_pix_watches),
):
    # banco e processador (urllib) bloqueiam: fora do event loop, que roda os contadores do Pix
    orchestrator = CheckoutOrchestrator(db, processor)
    session = await run_in_threadpool(orchestrator.create_checkout, _command(body))
    if watches is not None and session.payment_method == PaymentMethod.PIX:
        watches.start(session)
    return CheckoutResponse.from_session(session)


@router.post("/validate-coupon", response_model=CouponValidationResponse, response_model_exclude_none=True)
@limiter.limit(COUPON_LIMIT)
def validate_coupon(
    request: Request,
    body: CouponValidationRequest,
    db: Session = Depends(get_db),
):
    """Só pré-visualiza o desconto: não consome uso do cupom."""
    result = CouponValidator(db).validate(body.code, body.amount)
    if isinstance(result, CouponRejection):
        return CouponValidationResponse(valid=False, error=result.message, reason=result.reason)
    coupon = result.coupon
    return CouponValidationResponse(
        valid=True,
        discount_amount=result.discount_amount,
        final_amount=result.final_amount,
        coupon=CouponSummary(
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
        ),
    )


@router.get("/payment/{payment_id}", response_model=PaymentStatusResponse, response_model_exclude_none=True)
async def payment_status(
    payment_id: str,
    db: Session = Depends(get_db),
    watches: PixWatchRegistry | None = Depends(get_pix_watches),
):
    """Status atual; a expiração do Pix é recalculada a cada consulta."""
    session = await run_in_threadpool(PaymentSessionStateMachine(db).evaluate, payment_id)
    remaining = None
    if session.payment_method == PaymentMethod.PIX:
        remaining = remaining_seconds(session.pix_expires_at, utcnow())
        if watches is not None and PaymentStatus(session.status).is_terminal:
            await watches.stop(payment_id)
    return PaymentStatusResponse.from_session(session, remaining)


@router.post("/payment/{payment_id}/cancel", response_model=PaymentStatusResponse, response_model_exclude_none=True)
async def cancel_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    watches: PixWatchRegistry | None = Depends(get_pix_watches),
):
    result = await run_in_threadpool(PaymentSessionStateMachine(db).cancel, payment_id, "customer")
    if watches is not None:
        await watches.stop(payment_id)
    return PaymentStatusResponse.from_session(result.session)


def _apply_webhook(request: Request, body: WebhookNotification, db: Session) -> TransitionResult:
    if not webhook_secret_matches(request.headers.get("X-Webhook-Secret")):
        db.add(SecurityLog(event="bad_webhook_secret", ip=client_ip(request), endpoint=request.url.path))
        db.commit()
        raise AuthenticationError("Segredo do webhook inválido.", reason="InvalidWebhookSecret")
    stmt = select(PaymentSession).where(PaymentSession.processor_transaction_id == body.transaction_id)
    session = db.exec(stmt).first()
    if not session:
        raise NotFound("Transação não encontrada.")
    return PaymentSessionStateMachine(db).apply(session.id, body.status, "webhook")


@router.post("/webhook")
async def processor_webhook(
    request: Request,
    body: WebhookNotification,
    db: Session = Depends(get_db),
    watches: PixWatchRegistry | None = Depends(get_pix_watches),
):
    """Notificação do processador. Entrega repetida do mesmo status é no-op (200)."""
    result = await run_in_threadpool(_apply_webhook, request, body, db)
    session = result.session
    if watches is not None and PaymentStatus(session.status).is_terminal:
        await watches.stop(session.id)
    return {"ok": True, "id": session.id, "status": result.session.status.value, "changed": result.changed}
