"""
Criação do checkout: valida cliente, aplica cupom, calcula preço, cria a intenção
no processador e grava a PaymentSession. Falhas de preço/cupom acontecem antes de
qualquer chamada ao processador (nada é gravado).
"""
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from email_validator import EmailNotValidError, validate_email
from sqlmodel import Session, select

from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import AmountMismatch, CouponRejected, ProcessorUnavailable, ValidationFailed
from app.core.money import to_money
from app.models import Customer, PaymentEvent, PaymentMethod, PaymentSession, PaymentStatus
from app.services.coupon import CouponRejection, CouponValidator
from app.services.pricing import PricingResult, price
from app.services.processor import CardData, IntentRequest, PaymentProcessor
from app.services.session_state import PaymentSessionStateMachine

log = logging.getLogger("checkout")

_DIGITS = re.compile(r"^\d+$")
CPF_LENGTH = 11
PHONE_LENGTHS = (10, 11)  # DDD + 8 ou 9 dígitos
NAME_MIN_LENGTH = 3


@dataclass(frozen=True)
class CustomerData:
    name: str
    email: str
    phone: str
    cpf: str
    birth_date: date | None = None


@dataclass(frozen=True)
class CheckoutCommand:
    customer: CustomerData
    payment_method: PaymentMethod
    installments: int = 1
    coupon_code: str | None = None
    amount: Decimal | None = None  # valor exibido ao cliente; precisa bater com o plano
    card: CardData | None = None


def validate_customer(data: CustomerData, today: date | None = None) -> tuple[CustomerData, dict[str, str]]:
    """Normaliza e valida os campos. Retorna (dados normalizados, erros por campo)."""
    errors: dict[str, str] = {}
    name = " ".join((data.name or "").split())
    if len(name) < NAME_MIN_LENGTH:
        errors["name"] = "Nome deve ter pelo menos 3 caracteres."
    email = (data.email or "").strip()
    try:
        email = validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError:
        errors["email"] = "E-mail inválido."
    phone = (data.phone or "").strip()
    if not _DIGITS.match(phone) or len(phone) not in PHONE_LENGTHS:
        errors["phone"] = "Telefone inválido (DDD + número, só dígitos)."
    cpf = (data.cpf or "").strip()
    if not _DIGITS.match(cpf) or len(cpf) != CPF_LENGTH:
        errors["cpf"] = "CPF inválido (11 dígitos)."
    if data.birth_date and data.birth_date > (today or date.today()):
        errors["birthDate"] = "Data de nascimento no futuro."
    return CustomerData(name=name, email=email, phone=phone, cpf=cpf, birth_date=data.birth_date), errors


class CheckoutOrchestrator:
    def __init__(self, db: Session, processor: PaymentProcessor, now=None):
        self.db = db
        self.processor = processor
        self._now = now or utcnow

    def _validate(self, command: CheckoutCommand) -> CustomerData:
        customer, errors = validate_customer(command.customer, self._now().date())
        if command.amount is not None and to_money(command.amount) != to_money(settings.plan_amount):
            errors["amount"] = "Valor não confere com o plano."
        if command.payment_method == PaymentMethod.CREDIT_CARD:
            if command.card is None or not (command.card.payment_token or "").strip():
                errors["creditCard"] = "Token do cartão é obrigatório."
        if errors:
            raise ValidationFailed(errors)
        return customer

    def quote(self, payment_method: PaymentMethod, installments: int, coupon_code: str | None) -> PricingResult:
        """Preço do plano para o método/cupom; CouponRejected se o cupom não valer."""
        base = to_money(settings.plan_amount)
        coupon_result = None
        if coupon_code and coupon_code.strip():
            coupon_result = CouponValidator(self.db).validate(coupon_code, base, self._now())
            if isinstance(coupon_result, CouponRejection):
                raise CouponRejected(coupon_result.reason, coupon_result.message)
        return price(base, payment_method, installments, coupon_result)

    def _customer_record(self, data: CustomerData) -> Customer:
        """Reaproveita um cadastro idêntico; se algo mudou cria outro (cliente com pagamento é imutável)."""
        stmt = select(Customer).where(Customer.cpf == data.cpf).order_by(Customer.id.desc())
        for existing in self.db.exec(stmt).all():
            if (
                existing.name == data.name
                and existing.email == data.email
                and existing.phone == data.phone
                and existing.birth_date == data.birth_date
            ):
                return existing
        customer = Customer(
            name=data.name,
            email=data.email,
            phone=data.phone,
            cpf=data.cpf,
            birth_date=data.birth_date,
        )
        self.db.add(customer)
        self.db.flush()
        return customer

    def create_checkout(self, command: CheckoutCommand) -> PaymentSession:
        customer_data = self._validate(command)
        method = PaymentMethod(command.payment_method)
        pricing = self.quote(method, command.installments, command.coupon_code)

        session_id = str(uuid.uuid4())
        window = timedelta(minutes=settings.pix_expiration_minutes)
        intent = self.processor.create_intent(
            IntentRequest(
                reference=session_id,
                amount=pricing.final_amount,
                payment_method=method,
                installments=pricing.installments,
                customer_name=customer_data.name,
                customer_email=customer_data.email,
                customer_phone=customer_data.phone,
                customer_cpf=customer_data.cpf,
                expires_in=window,
                card=command.card if method == PaymentMethod.CREDIT_CARD else None,
                description=settings.plan_name,
            )
        )
        if to_money(intent.amount) != pricing.final_amount:
            log.error(
                "Valor divergente do processador: esperado=%s recebido=%s transacao=%s",
                pricing.final_amount, intent.amount, intent.transaction_id,
            )
            raise AmountMismatch()

        created_at = self._now()
        expires_at = None
        if method == PaymentMethod.PIX:
            if not (intent.qr_code and intent.pix_key):
                log.error("Processador não retornou QR/copia e cola: transacao=%s", intent.transaction_id)
                raise ProcessorUnavailable("Processador não retornou os dados do Pix.")
            expires_at = intent.expires_at
            if expires_at is None:
                log.warning("Processador sem expiração; usando janela de %s min", settings.pix_expiration_minutes)
                expires_at = created_at + window

        status = PaymentStatus.PROCESSING if intent.status == PaymentStatus.PROCESSING else PaymentStatus.PENDING
        customer = self._customer_record(customer_data)
        session = PaymentSession(
            id=session_id,
            customer_id=customer.id,
            amount=pricing.base_amount,
            discount_amount=pricing.discount_amount,
            final_amount=pricing.final_amount,
            discount_source=pricing.discount_source,
            payment_method=method,
            installments=pricing.installments,
            installment_value=pricing.installment_value,
            status=status,
            coupon_code=pricing.coupon_code,
            processor_transaction_id=intent.transaction_id,
            pix_qr_code=intent.qr_code if method == PaymentMethod.PIX else None,
            pix_key=intent.pix_key if method == PaymentMethod.PIX else None,
            pix_expires_at=expires_at,
            created_at=created_at,
            updated_at=created_at,
        )
        self.db.add(session)
        self.db.add(PaymentEvent(payment_id=session_id, from_status=None, to_status=status.value, source="checkout"))
        self.db.commit()
        self.db.refresh(session)
        log.info(
            "Checkout criado id=%s metodo=%s final=%s parcelas=%s cupom=%s",
            session.id, method.value, session.final_amount, session.installments, session.coupon_code or "-",
        )
        if intent.status in (PaymentStatus.APPROVED, PaymentStatus.REJECTED):
            # cartão decidido na hora: passa pela máquina de estados (cupom, histórico)
            session = PaymentSessionStateMachine(self.db, self._now).apply(session.id, intent.status, "processor").session
        return session
