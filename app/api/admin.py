"""Admin API (token Bearer): login, pagamentos, clientes e cupons."""
import logging
import math
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func
from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_current_admin, get_pix_watches
from app.core.clock import to_naive_utc, utcnow
from app.core.database import get_db
from app.core.errors import AuthenticationError, NotFound, ValidationFailed
from app.core.money import ZERO, to_money
from app.core.rate_limit import LOGIN_LIMIT, client_ip, limiter
from app.core.security import create_admin_token, verify_password
from app.models import (
    AdminUser,
    Coupon,
    Customer,
    DiscountType,
    PaymentMethod,
    PaymentSession,
    PaymentStatus,
    SecurityLog,
)
from app.schemas import (
    AdminLogin,
    AdminMe,
    CouponCreate,
    CouponOut,
    CouponUpdate,
    CustomerList,
    CustomerOut,
    CustomerUpdate,
    Pagination,
    PaymentList,
    PaymentOut,
    PaymentStats,
    PaymentStatusUpdate,
    Token,
)
from app.services.checkout import CustomerData, validate_customer
from app.services.coupon import normalize_code
from app.services.pix_watch import PixWatchRegistry
from app.services.session_state import PaymentSessionStateMachine

log = logging.getLogger("checkout.admin")

router = APIRouter(prefix="/admin", tags=["admin"])
coupons_router = APIRouter(prefix="/coupons", tags=["coupons"])

# Bloqueio: 5 logins errados do mesmo IP -> 15 min
ADMIN_LOGIN_MAX_FAILURES = 5
ADMIN_LOCKOUT_MINUTES = 15


def _pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if total else 0)


def _customer_out(c: Customer) -> CustomerOut:
    return CustomerOut(
        id=c.id,
        name=c.name,
        email=c.email,
        phone=c.phone,
        cpf=c.cpf,
        birth_date=c.birth_date,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


def _payment_out(p: PaymentSession, customer: Customer | None = None) -> PaymentOut:
    return PaymentOut(
        id=p.id,
        user_id=p.customer_id,
        amount=to_money(p.amount),
        discount_amount=to_money(p.discount_amount),
        final_amount=to_money(p.final_amount),
        discount_source=p.discount_source,
        payment_method=p.payment_method,
        installments=p.installments,
        installment_value=to_money(p.installment_value),
        status=p.status,
        coupon_code=p.coupon_code,
        efi_transaction_id=p.processor_transaction_id,
        pix_qr_code=p.pix_qr_code,
        pix_key=p.pix_key,
        pix_expires_at=p.pix_expires_at,
        created_at=p.created_at,
        updated_at=p.updated_at,
        user=_customer_out(customer) if customer else None,
    )


def _coupon_out(c: Coupon) -> CouponOut:
    return CouponOut(
        code=c.code,
        description=c.description,
        discount_type=c.discount_type,
        discount_value=to_money(c.discount_value),
        min_amount=to_money(c.min_amount) if c.min_amount is not None else None,
        max_discount=to_money(c.max_discount) if c.max_discount is not None else None,
        valid_from=c.valid_from,
        valid_until=c.valid_until,
        max_uses=c.max_uses,
        current_uses=c.current_uses or 0,
        is_active=c.is_active,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


# ---------- Autenticação ----------
def _recent_failures(db: Session, ip: str) -> int:
    since = utcnow() - timedelta(minutes=ADMIN_LOCKOUT_MINUTES)
    stmt = (
        select(func.count(SecurityLog.id))
        .where(SecurityLog.event == "failed_login")
        .where(SecurityLog.ip == ip)
        .where(SecurityLog.created_at >= since)
    )
    return db.exec(stmt).one() or 0


@router.post("/login", response_model=Token)
@limiter.limit(LOGIN_LIMIT)
def admin_login(request: Request, body: AdminLogin, db: Session = Depends(get_db)):
    ip = client_ip(request)
    if _recent_failures(db, ip) >= ADMIN_LOGIN_MAX_FAILURES:
        raise HTTPException(status_code=429, detail="Muitas tentativas. Aguarde alguns minutos.")
    email = str(body.email).strip().lower()
    admin = db.exec(select(AdminUser).where(AdminUser.email == email)).first()
    if not admin or not admin.is_active or not verify_password(body.password, admin.hashed_password):
        db.add(SecurityLog(event="failed_login", ip=ip, endpoint=request.url.path, detail=email[:120]))
        db.commit()
        log.warning("Login admin recusado email=%s ip=%s", email, ip)
        raise AuthenticationError("E-mail ou senha inválidos.", reason="InvalidCredentials")
    admin.last_login_at = utcnow()
    db.add(admin)
    db.commit()
    return Token(access_token=create_admin_token(admin.id))


@router.get("/me", response_model=AdminMe)
def admin_me(admin: AdminUser = Depends(get_current_admin)):
    return AdminMe(id=admin.id, email=admin.email, name=admin.name)


# ---------- Pagamentos ----------
@router.get("/payments/stats", response_model=PaymentStats)
def payments_stats(_: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)):
    by_status = {s: 0 for s in PaymentStatus}
    for status, count in db.exec(select(PaymentSession.status, func.count(PaymentSession.id)).group_by(PaymentSession.status)).all():
        by_status[PaymentStatus(status)] = count
    by_method = {m: 0 for m in PaymentMethod}
    for method, count in db.exec(
        select(PaymentSession.payment_method, func.count(PaymentSession.id)).group_by(PaymentSession.payment_method)
    ).all():
        by_method[PaymentMethod(method)] = count
    total_amount = db.exec(select(func.sum(PaymentSession.final_amount))).one()
    approved_amount = db.exec(
        select(func.sum(PaymentSession.final_amount)).where(PaymentSession.status == PaymentStatus.APPROVED)
    ).one()
    return PaymentStats(
        total=sum(by_status.values()),
        by_status=by_status,
        by_method=by_method,
        total_amount=to_money(total_amount or ZERO),
        approved_amount=to_money(approved_amount or ZERO),
    )


@router.get("/payments", response_model=PaymentList)
def payments_list(
    _: AdminUser = Depends(get_current_admin),
    db: Session = Depends(get_db),
    status: PaymentStatus | None = None,
    payment_method: PaymentMethod | None = Query(None, alias="paymentMethod"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    stmt = select(PaymentSession)
    count_stmt = select(func.count(PaymentSession.id))
    if status is not None:
        stmt = stmt.where(PaymentSession.status == status)
        count_stmt = count_stmt.where(PaymentSession.status == status)
    if payment_method is not None:
        stmt = stmt.where(PaymentSession.payment_method == payment_method)
        count_stmt = count_stmt.where(PaymentSession.payment_method == payment_method)
    total = db.exec(count_stmt).one() or 0
    rows = db.exec(stmt.order_by(PaymentSession.created_at.desc()).offset((page - 1) * limit).limit(limit)).all()
    customer_ids = {p.customer_id for p in rows}
    customers = {}
    if customer_ids:
        customers = {c.id: c for c in db.exec(select(Customer).where(Customer.id.in_(customer_ids))).all()}
    return PaymentList(
        payments=[_payment_out(p, customers.get(p.customer_id)) for p in rows],
        pagination=_pagination(page, limit, total),
    )


@router.get("/payments/{payment_id}", response_model=PaymentOut)
def payment_detail(payment_id: str, _: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)):
    payment = PaymentSessionStateMachine(db).evaluate(payment_id)
    return _payment_out(payment, db.get(Customer, payment.customer_id))


@router.patch("/payments/{payment_id}/status", response_model=PaymentOut)
async def payment_update_status(
    payment_id: str,
    body: PaymentStatusUpdate,
    admin: AdminUser = Depends(get_current_admin),
    db: Session = Depends(get_db),
    watches: PixWatchRegistry | None = Depends(get_pix_watches),
):
    """Operador muda o status pela máquina de estados (terminal não volta)."""

    def change() -> PaymentOut:
        result = PaymentSessionStateMachine(db).apply(payment_id, body.status, "admin", detail=admin.email)
        return _payment_out(result.session, db.get(Customer, result.session.customer_id))

    payment = await run_in_threadpool(change)
    if watches is not None and PaymentStatus(payment.status).is_terminal:
        await watches.stop(payment_id)
    return payment


# ---------- Clientes ----------
def _customer_has_payments(db: Session, customer_id: int) -> bool:
    stmt = select(func.count(PaymentSession.id)).where(PaymentSession.customer_id == customer_id)
    return (db.exec(stmt).one() or 0) > 0


def _get_customer(db: Session, customer_id: int) -> Customer:
    customer = db.get(Customer, customer_id)
    if not customer:
        raise NotFound("Cliente não encontrado.")
    return customer


@router.get("/users", response_model=CustomerList)
def customers_list(
    _: AdminUser = Depends(get_current_admin),
    db: Session = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = None,
):
    stmt = select(Customer)
    count_stmt = select(func.count(Customer.id))
    if search and search.strip():
        q = f"%{search.strip()}%"
        cond = Customer.name.ilike(q) | Customer.email.ilike(q) | Customer.cpf.ilike(q)
        stmt = stmt.where(cond)
        count_stmt = count_stmt.where(cond)
    total = db.exec(count_stmt).one() or 0
    rows = db.exec(stmt.order_by(Customer.id.desc()).offset((page - 1) * limit).limit(limit)).all()
    return CustomerList(users=[_customer_out(c) for c in rows], pagination=_pagination(page, limit, total))


@router.get("/users/{customer_id}", response_model=CustomerOut)
def customer_detail(customer_id: int, _: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)):
    return _customer_out(_get_customer(db, customer_id))


@router.patch("/users/{customer_id}", response_model=CustomerOut)
def customer_update(
    customer_id: int,
    body: CustomerUpdate,
    _: AdminUser = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    customer = _get_customer(db, customer_id)
    if _customer_has_payments(db, customer_id):
        raise HTTPException(status_code=409, detail="Cliente com pagamento não pode ser alterado.")
    changes = body.model_dump(exclude_unset=True)
    merged = CustomerData(
        name=changes.get("name", customer.name),
        email=changes.get("email", customer.email),
        phone=changes.get("phone", customer.phone),
        cpf=changes.get("cpf", customer.cpf),
        birth_date=changes.get("birth_date", customer.birth_date),
    )
    normalized, errors = validate_customer(merged)
    if errors:
        raise ValidationFailed(errors)
    customer.name = normalized.name
    customer.email = normalized.email
    customer.phone = normalized.phone
    customer.cpf = normalized.cpf
    customer.birth_date = normalized.birth_date
    customer.updated_at = utcnow()
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return _customer_out(customer)


@router.delete("/users/{customer_id}")
def customer_delete(customer_id: int, _: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)):
    customer = _get_customer(db, customer_id)
    if _customer_has_payments(db, customer_id):
        raise HTTPException(status_code=409, detail="Cliente com pagamento não pode ser removido.")
    db.delete(customer)
    db.commit()
    return {"ok": True}


# ---------- Cupons ----------
def _get_coupon_or_404(db: Session, code: str) -> Coupon:
    coupon = db.exec(select(Coupon).where(Coupon.code == normalize_code(code))).first()
    if not coupon:
        raise NotFound("Cupom não encontrado.")
    return coupon


@coupons_router.get("", response_model=list[CouponOut])
def coupons_list(_: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)):
    rows = db.exec(select(Coupon).order_by(Coupon.id.desc())).all()
    return [_coupon_out(c) for c in rows]


@coupons_router.get("/{code}", response_model=CouponOut)
def coupon_detail(code: str, _: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)):
    return _coupon_out(_get_coupon_or_404(db, code))


@coupons_router.post("", response_model=CouponOut, status_code=201)
def coupon_create(body: CouponCreate, _: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)):
    code_clean = normalize_code(body.code)
    if db.exec(select(Coupon).where(Coupon.code == code_clean)).first():
        raise HTTPException(status_code=409, detail="Este código já existe.")
    coupon = Coupon(
        code=code_clean,
        description=(body.description or "").strip() or None,
        discount_type=body.discount_type,
        discount_value=to_money(body.discount_value),
        min_amount=to_money(body.min_amount) if body.min_amount is not None else None,
        max_discount=to_money(body.max_discount) if body.max_discount is not None else None,
        valid_from=to_naive_utc(body.valid_from) if body.valid_from else utcnow(),
        valid_until=to_naive_utc(body.valid_until) if body.valid_until else None,
        max_uses=body.max_uses,
        is_active=body.is_active,
    )
    if coupon.valid_until and coupon.valid_until <= coupon.valid_from:
        raise ValidationFailed({"validUntil": "validUntil deve ser posterior a validFrom."})
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    log.info("Cupom criado code=%s", coupon.code)
    return _coupon_out(coupon)


def _check_coupon_rules(coupon: Coupon) -> None:
    errors = {}
    if coupon.discount_type == DiscountType.PERCENTAGE and coupon.discount_value > 100:
        errors["discountValue"] = "Desconto percentual não pode passar de 100."
    if coupon.discount_type == DiscountType.FIXED and coupon.max_discount is not None:
        errors["maxDiscount"] = "Desconto máximo só vale para cupom percentual."
    if coupon.valid_until and coupon.valid_until <= coupon.valid_from:
        errors["validUntil"] = "validUntil deve ser posterior a validFrom."
    if coupon.max_uses is not None and coupon.max_uses < (coupon.current_uses or 0):
        errors["maxUses"] = "Limite menor que os usos já contabilizados."
    if errors:
        raise ValidationFailed(errors)


@router.patch("/coupons/{code}", response_model=CouponOut)
def coupon_update(
    code: str,
    body: CouponUpdate,
    _: AdminUser = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    coupon = _get_coupon_or_404(db, code)
    changes = body.model_dump(exclude_unset=True)
    for key in ("discount_value", "min_amount", "max_discount"):
        if key in changes and changes[key] is not None:
            changes[key] = to_money(changes[key])
    for key in ("valid_from", "valid_until"):
        if key in changes and changes[key] is not None:
            changes[key] = to_naive_utc(changes[key])
    for key in ("discount_type", "discount_value", "valid_from", "is_active"):
        if key in changes and changes[key] is None:
            del changes[key]
    for key, value in changes.items():
        setattr(coupon, key, value)
    _check_coupon_rules(coupon)
    coupon.updated_at = utcnow()
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return _coupon_out(coupon)


@router.delete("/coupons/{code}")
def coupon_delete(code: str, _: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)):
    coupon = _get_coupon_or_404(db, code)
    if (coupon.current_uses or 0) > 0:
        raise HTTPException(status_code=409, detail="Cupom já utilizado; desative em vez de remover.")
    db.delete(coupon)
    db.commit()
    return {"ok": True}
