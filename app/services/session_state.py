"""
Ciclo de vida da PaymentSession.

PENDING -> PROCESSING -> APPROVED | REJECTED
PENDING | PROCESSING -> EXPIRED   (só Pix, por tempo)
PENDING | PROCESSING -> CANCELLED (cliente ou operador)

Terminais: APPROVED, REJECTED, EXPIRED, CANCELLED. Repetir o status atual é no-op;
sair de um terminal é InvalidTransition. A gravação é compare-and-set no status
anterior, então callback e polling podem entregar o mesmo resultado ao mesmo tempo.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlmodel import Session

from app.core.clock import utcnow
from app.core.errors import InvalidTransition, NotFound
from app.models import PaymentEvent, PaymentMethod, PaymentSession, PaymentStatus
from app.services.coupon import redeem_coupon

log = logging.getLogger("checkout.state")

ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {
            PaymentStatus.PROCESSING,
            PaymentStatus.APPROVED,
            PaymentStatus.REJECTED,
            PaymentStatus.EXPIRED,
            PaymentStatus.CANCELLED,
        }
    ),
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.APPROVED, PaymentStatus.REJECTED, PaymentStatus.EXPIRED, PaymentStatus.CANCELLED}
    ),
}

# Limite de releituras quando outro escritor muda o status entre a leitura e o UPDATE
_MAX_CAS_ATTEMPTS = 5


@dataclass(frozen=True)
class TransitionResult:
    session: PaymentSession
    changed: bool


def is_expired(session: PaymentSession, now: datetime) -> bool:
    """Sempre recalculado a partir de pix_expires_at, nunca de um contador."""
    return (
        session.payment_method == PaymentMethod.PIX
        and session.pix_expires_at is not None
        and now >= session.pix_expires_at
    )


def remaining_seconds(expires_at: datetime | None, now: datetime) -> int:
    if expires_at is None:
        return 0
    return max(0, int((expires_at - now).total_seconds()))


def check_transition(session: PaymentSession, target: PaymentStatus) -> bool:
    """True se precisa gravar, False se já está em target. Levanta InvalidTransition se proibido."""
    current = PaymentStatus(session.status)
    if current == target:
        return False
    if current.is_terminal:
        raise InvalidTransition(
            f"Pagamento já finalizado como {current.value}; não pode ir para {target.value}."
        )
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(f"Transição {current.value} -> {target.value} não permitida.")
    if target == PaymentStatus.EXPIRED and session.payment_method != PaymentMethod.PIX:
        raise InvalidTransition("Somente pagamentos Pix expiram.")
    return True


class PaymentSessionStateMachine:
    def __init__(self, db: Session, now=None):
        self.db = db
        self._now = now or utcnow

    def _load(self, session_id: str) -> PaymentSession:
        session = self.db.get(PaymentSession, session_id, populate_existing=True)
        if session is None:
            raise NotFound("Pagamento não encontrado.")
        return session

    def _compare_and_set(self, session: PaymentSession, target: PaymentStatus, now: datetime) -> bool:
        stmt = (
            update(PaymentSession)
            .where(PaymentSession.id == session.id)
            .where(PaymentSession.status == session.status)
            .values(status=target, updated_at=now)
        )
        result = self.db.connection().execute(stmt)
        return (result.rowcount or 0) > 0

    def _record(self, session_id: str, before: PaymentStatus, target: PaymentStatus, source: str, detail: str | None) -> None:
        self.db.add(
            PaymentEvent(
                payment_id=session_id,
                from_status=before.value,
                to_status=target.value,
                source=source,
                detail=detail,
            )
        )

    def _transition(self, session_id: str, target: PaymentStatus, source: str, detail: str | None) -> TransitionResult:
        for _ in range(_MAX_CAS_ATTEMPTS):
            session = self._load(session_id)
            if not check_transition(session, target):
                return TransitionResult(session, False)
            before = PaymentStatus(session.status)
            now = self._now()
            if self._compare_and_set(session, target, now):
                self._record(session_id, before, target, source, detail)
                self.db.commit()
                log.info(
                    "Pagamento %s: %s -> %s (origem=%s)", session_id, before.value, target.value, source
                )
                if target == PaymentStatus.APPROVED:
                    self._on_approved(self._load(session_id))
                return TransitionResult(self._load(session_id), True)
            # outro escritor ganhou: relê e reavalia
            self.db.rollback()
        raise InvalidTransition("Conflito ao atualizar o pagamento; tente novamente.")

    def _on_approved(self, session: PaymentSession) -> None:
        """Conta o uso do cupom uma única vez por pagamento aprovado."""
        if not session.coupon_code:
            return
        stmt = (
            update(PaymentSession)
            .where(PaymentSession.id == session.id)
            .where(PaymentSession.coupon_redeemed.is_(False))
            .values(coupon_redeemed=True)
        )
        claimed = (self.db.connection().execute(stmt).rowcount or 0) > 0
        self.db.commit()
        if claimed:
            redeem_coupon(self.db, session.coupon_code)

    def evaluate(self, session_id: str) -> PaymentSession:
        """Expira o Pix se now >= pix_expires_at e ainda não terminou. Chamado a cada leitura/tick."""
        session = self._load(session_id)
        if not PaymentStatus(session.status).is_terminal and is_expired(session, self._now()):
            return self._transition(session_id, PaymentStatus.EXPIRED, "expiry", None).session
        return session

    def apply(self, session_id: str, target: PaymentStatus | str, source: str, detail: str | None = None) -> TransitionResult:
        target = PaymentStatus(target)
        if target != PaymentStatus.EXPIRED:
            # prazo do Pix vencido vale antes de qualquer notificação
            session = self.evaluate(session_id)
            if target == PaymentStatus.APPROVED and session.status == PaymentStatus.EXPIRED:
                log.warning("Aprovação após expiração do Pix %s (origem=%s); conciliar manualmente", session_id, source)
        return self._transition(session_id, target, source, detail)

    def cancel(self, session_id: str, source: str = "customer") -> TransitionResult:
        return self.apply(session_id, PaymentStatus.CANCELLED, source)
