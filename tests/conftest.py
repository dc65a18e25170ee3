"""Pytest fixtures: test client, test DB (in-memory SQLite), admin token, sandbox processor."""
import os
from datetime import date

import pytest
from fastapi.testclient import TestClient

# Ambiente de teste (precisa ser definido antes de importar o app)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")
os.environ.setdefault("ADMIN_PASSWORD", "admin123456")
os.environ.setdefault("PROCESSOR", "sandbox")
os.environ.setdefault("PIX_WATCH_ENABLED", "false")
# Limites altos para a suíte inteira passar
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")
os.environ.setdefault("RATE_LIMIT_COUPON_PER_MINUTE", "1000")
os.environ.setdefault("RATE_LIMIT_LOGIN_PER_MINUTE", "1000")

from sqlmodel import Session

from app.core.database import engine, init_db, make_engine
from app.main import app
from app.models import Coupon, DiscountType, PaymentMethod
from app.services.checkout import CheckoutCommand, CheckoutOrchestrator, CustomerData
from app.services.processor import CardData, SandboxProcessor, get_processor

WEBHOOK_HEADERS = {"X-Webhook-Secret": "test-webhook-secret"}


def customer_payload(**overrides) -> dict:
    data = {
        "name": "Maria Silva",
        "email": "maria@example.com",
        "phone": "11987654321",
        "cpf": "12345678901",
        "birthDate": "1990-05-20",
    }
    data.update(overrides)
    return data


def customer_data(**overrides) -> CustomerData:
    data = {
        "name": "Maria Silva",
        "email": "maria@example.com",
        "phone": "11987654321",
        "cpf": "12345678901",
        "birth_date": date(1990, 5, 20),
    }
    data.update(overrides)
    return CustomerData(**data)


def pix_command(**overrides) -> CheckoutCommand:
    return CheckoutCommand(customer=customer_data(), payment_method=PaymentMethod.PIX, **overrides)


def card_command(installments: int = 1, **overrides) -> CheckoutCommand:
    return CheckoutCommand(
        customer=customer_data(),
        payment_method=PaymentMethod.CREDIT_CARD,
        installments=installments,
        card=CardData(payment_token="tok_test_123"),
        **overrides,
    )


def add_coupon(bind=None, **fields) -> Coupon:
    """Grava um cupom direto no banco (fora do admin)."""
    data = {"discount_type": DiscountType.PERCENTAGE, "discount_value": 10}
    data.update(fields)
    data["code"] = data["code"].upper()
    with Session(bind or engine) as db:
        coupon = Coupon(**data)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon


def load(model, key, bind=None):
    """Leitura nova do banco (sem o identity map de outra sessão)."""
    with Session(bind or engine) as db:
        return db.get(model, key)


@pytest.fixture(scope="function")
def client():
    """TestClient; o lifespan cria as tabelas e o admin no SQLite em memória."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db(client):
    with Session(engine) as session:
        yield session


@pytest.fixture
def sandbox() -> SandboxProcessor:
    """Mesmo processador que o app usa nas rotas (PROCESSOR=sandbox)."""
    processor = get_processor()
    assert isinstance(processor, SandboxProcessor)
    return processor


@pytest.fixture
def override_processor():
    """Troca o processador das rotas; desfeito no fim do teste."""

    def _set(processor):
        app.dependency_overrides[get_processor] = lambda: processor
        return processor

    yield _set
    app.dependency_overrides.pop(get_processor, None)


@pytest.fixture
def file_engine(tmp_path):
    """SQLite em arquivo: várias conexões de verdade (threads, tarefas asyncio)."""
    eng = make_engine(f"sqlite:///{tmp_path / 'checkout_test.db'}")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def orchestrate(file_engine):
    """Cria sessões no banco em arquivo com um sandbox próprio."""
    processor = SandboxProcessor()

    def _create(command: CheckoutCommand, now=None):
        with Session(file_engine) as db:
            return CheckoutOrchestrator(db, processor, now=now).create_checkout(command)

    _create.processor = processor
    return _create


@pytest.fixture(scope="session")
def _admin_token():
    """Login único do admin semeado pelo init_db. Mesmo token durante a sessão."""
    with TestClient(app) as auth_client:
        r = auth_client.post(
            "/admin/login",
            json={"email": "admin@example.com", "password": "admin123456"},
            headers={"X-Forwarded-For": "10.0.0.1"},
        )
        assert r.status_code == 200, f"Login failed: {r.status_code} {r.text}"
        return r.json().get("accessToken")


@pytest.fixture
def auth_headers(_admin_token):
    """Authorization header com o token do admin."""
    return {"Authorization": f"Bearer {_admin_token}"}
