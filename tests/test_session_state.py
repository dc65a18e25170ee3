"""Máquina de estados da PaymentSession: idempotência, terminais, expiração, cupom."""
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlmodel import Session, select

from app.core.clock import utcnow
from app.core.errors import InvalidTransition, NotFound
from app.models import Coupon, PaymentEvent, PaymentSession, PaymentStatus
from app.services.session_state import PaymentSessionStateMachine, remaining_seconds
from conftest import add_coupon, card_command, load, pix_command


def _later(minutes: int):
    moment = utcnow() + timedelta(minutes=minutes)
    return lambda: moment


def test_pix_session_starts_pending_with_expiry(orchestrate):
    session = orchestrate(pix_command())
    assert session.status == PaymentStatus.PENDING
    assert session.pix_expires_at is not None
    assert 3500 <= remaining_seconds(session.pix_expires_at, utcnow()) <= 3600


def test_repeated_approval_is_noop(orchestrate, file_engine):
    session = orchestrate(card_command())
    with Session(file_engine) as db:
        first = PaymentSessionStateMachine(db).apply(session.id, PaymentStatus.APPROVED, "webhook")
        second = PaymentSessionStateMachine(db).apply(session.id, "APPROVED", "poll")
        assert first.changed is True
        assert second.changed is False
        assert second.session.status == PaymentStatus.APPROVED
        stmt = select(PaymentEvent).where(PaymentEvent.payment_id == session.id).order_by(PaymentEvent.id)
        events = db.exec(stmt).all()
    assert [e.to_status for e in events] == ["PENDING", "APPROVED"]
    assert events[1].from_status == "PENDING"
    assert events[1].source == "webhook"


def test_terminal_status_is_final(orchestrate, file_engine):
    session = orchestrate(card_command())
    with Session(file_engine) as db:
        machine = PaymentSessionStateMachine(db)
        machine.apply(session.id, PaymentStatus.REJECTED, "webhook")
        with pytest.raises(InvalidTransition):
            machine.apply(session.id, PaymentStatus.APPROVED, "webhook")
        with pytest.raises(InvalidTransition):
            machine.cancel(session.id)
    assert load(PaymentSession, session.id, bind=file_engine).status == PaymentStatus.REJECTED


def test_processing_then_approved(orchestrate, file_engine):
    session = orchestrate(card_command(installments=3))
    with Session(file_engine) as db:
        machine = PaymentSessionStateMachine(db)
        assert machine.apply(session.id, PaymentStatus.PROCESSING, "poll").changed
        with pytest.raises(InvalidTransition):
            machine.apply(session.id, PaymentStatus.PENDING, "admin")
        result = machine.apply(session.id, PaymentStatus.APPROVED, "poll")
    assert result.session.status == PaymentStatus.APPROVED


def test_card_sessions_never_expire(orchestrate, file_engine):
    session = orchestrate(card_command())
    with Session(file_engine) as db:
        machine = PaymentSessionStateMachine(db, now=_later(24 * 60))
        assert machine.evaluate(session.id).status == PaymentStatus.PENDING
        with pytest.raises(InvalidTransition):
            machine.apply(session.id, PaymentStatus.EXPIRED, "admin")


def test_evaluate_expires_pix_after_deadline(orchestrate, file_engine):
    session = orchestrate(pix_command())
    with Session(file_engine) as db:
        before = PaymentSessionStateMachine(db, now=_later(59)).evaluate(session.id)
        assert before.status == PaymentStatus.PENDING
        after = PaymentSessionStateMachine(db, now=_later(61)).evaluate(session.id)
        assert after.status == PaymentStatus.EXPIRED


def test_late_approval_after_expiry_is_rejected(orchestrate, file_engine):
    session = orchestrate(pix_command())
    with Session(file_engine) as db:
        machine = PaymentSessionStateMachine(db, now=_later(61))
        with pytest.raises(InvalidTransition):
            machine.apply(session.id, PaymentStatus.APPROVED, "webhook")
    assert load(PaymentSession, session.id, bind=file_engine).status == PaymentStatus.EXPIRED


def test_unknown_session(file_engine):
    with Session(file_engine) as db:
        with pytest.raises(NotFound):
            PaymentSessionStateMachine(db).evaluate("nao-existe")


def test_coupon_counted_once_on_approval(orchestrate, file_engine):
    coupon = add_coupon(bind=file_engine, code="UMAVEZ", discount_value=20)
    session = orchestrate(card_command(coupon_code="umavez"))
    assert session.coupon_code == "UMAVEZ"
    assert load(Coupon, coupon.id, bind=file_engine).current_uses == 0
    with Session(file_engine) as db:
        machine = PaymentSessionStateMachine(db)
        machine.apply(session.id, PaymentStatus.APPROVED, "webhook")
        machine.apply(session.id, PaymentStatus.APPROVED, "poll")
    assert load(Coupon, coupon.id, bind=file_engine).current_uses == 1
    assert load(PaymentSession, session.id, bind=file_engine).coupon_redeemed is True


def test_cancelled_session_does_not_count_coupon(orchestrate, file_engine):
    coupon = add_coupon(bind=file_engine, code="CANCELA", discount_value=20)
    session = orchestrate(card_command(coupon_code="CANCELA"))
    with Session(file_engine) as db:
        PaymentSessionStateMachine(db).cancel(session.id)
    assert load(Coupon, coupon.id, bind=file_engine).current_uses == 0


def test_concurrent_approvals_apply_once(orchestrate, file_engine):
    coupon = add_coupon(bind=file_engine, code="CONCORRE", discount_value=20)
    session = orchestrate(card_command(coupon_code="CONCORRE"))

    def _approve(source):
        with Session(file_engine) as db:
            return PaymentSessionStateMachine(db).apply(session.id, PaymentStatus.APPROVED, source).changed

    with ThreadPoolExecutor(max_workers=6) as pool:
        changed = list(pool.map(_approve, ["webhook", "poll"] * 3))
    assert changed.count(True) == 1
    assert load(Coupon, coupon.id, bind=file_engine).current_uses == 1
    with Session(file_engine) as db:
        events = db.exec(
            select(PaymentEvent).where(PaymentEvent.payment_id == session.id, PaymentEvent.to_status == "APPROVED")
        ).all()
    assert len(events) == 1


def test_remaining_seconds_never_negative():
    now = utcnow()
    assert remaining_seconds(now - timedelta(seconds=5), now) == 0
    assert remaining_seconds(now + timedelta(seconds=90), now) == 90
    assert remaining_seconds(None, now) == 0
