"""Processadores: BR Code do sandbox e cliente HTTP da Efí (urlopen substituído)."""
import io
import json
from datetime import datetime, timedelta
from decimal import Decimal
from urllib.error import HTTPError, URLError

import pytest

from app.core.config import settings
from app.core.errors import ProcessorRejected, ProcessorUnavailable
from app.models import PaymentMethod, PaymentStatus
from app.services import processor as processor_module
from app.services.processor import (
    EFI_CHARGE_STATUS,
    EFI_PIX_STATUS,
    CardData,
    EfiProcessor,
    IntentRequest,
    PaymentProcessor,
    SandboxProcessor,
    build_brcode,
    build_processor,
    crc16_ccitt,
    map_efi_status,
)


def _request(method=PaymentMethod.PIX, amount="131.58", **overrides) -> IntentRequest:
    data = dict(
        reference="sessao-1",
        amount=Decimal(amount),
        payment_method=method,
        installments=1,
        customer_name="Maria Silva",
        customer_email="maria@example.com",
        customer_phone="11987654321",
        customer_cpf="12345678901",
        expires_in=timedelta(minutes=60),
        description="Plano Anual",
    )
    data.update(overrides)
    return IntentRequest(**data)


class FakeResponse:
    def __init__(self, payload: dict):
        self.payload = payload

    def read(self):
        return json.dumps(self.payload).encode()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def efi(monkeypatch):
    """EfiProcessor com rotas falsas; .calls guarda (método, url, corpo, headers)."""
    routes = []
    calls = []

    def fake_urlopen(req, timeout=None, context=None):
        body = json.loads(req.data) if req.data else None
        calls.append((req.get_method(), req.full_url, body, dict(req.header_items())))
        for method, fragment, payload in routes:
            if req.get_method() == method and fragment in req.full_url:
                if isinstance(payload, Exception):
                    raise payload
                return FakeResponse(payload)
        raise AssertionError(f"rota inesperada: {req.get_method()} {req.full_url}")

    monkeypatch.setattr(processor_module, "urlopen", fake_urlopen)
    client = EfiProcessor(
        client_id="cid",
        client_secret="csecret",
        pix_key="chave@example.com",
        base_url="https://pix.test",
        charges_url="https://cobrancas.test",
    )
    client.routes = routes
    client.calls = calls
    routes.append(("POST", "/oauth/token", {"access_token": "pix-token", "expires_in": 3600}))
    routes.append(("POST", "/v1/authorize", {"access_token": "charge-token", "expires_in": 3600}))
    return client


def test_crc16_check_value():
    assert crc16_ccitt("123456789") == "29B1"


def test_brcode_layout():
    code = build_brcode("chave@example.com", Decimal("131.58"), "abc123")
    assert code.startswith("000201")
    assert "0014br.gov.bcb.pix" in code
    assert "5406131.58" in code
    assert "5303986" in code
    assert code[-8:-4] == "6304"
    assert crc16_ccitt(code[:-4]) == code[-4:]


def test_sandbox_pix_intent_and_settlement():
    now = datetime(2026, 1, 10, 12, 0)
    sandbox = SandboxProcessor(clock=lambda: now)
    intent = sandbox.create_intent(_request())
    assert intent.amount == Decimal("131.58")
    assert intent.expires_at == now + timedelta(minutes=60)
    assert intent.qr_code == intent.pix_key
    assert sandbox.get_status(intent.transaction_id) == PaymentStatus.PENDING
    sandbox.settle(intent.transaction_id, PaymentStatus.APPROVED)
    assert sandbox.get_status(intent.transaction_id) == PaymentStatus.APPROVED


def test_sandbox_card_has_no_pix_data():
    intent = SandboxProcessor().create_intent(_request(PaymentMethod.CREDIT_CARD, "154.80", card=CardData("tok")))
    assert intent.qr_code is None
    assert intent.expires_at is None


def test_sandbox_unknown_transaction():
    sandbox = SandboxProcessor()
    with pytest.raises(ProcessorUnavailable):
        sandbox.get_status("nada")
    with pytest.raises(KeyError):
        sandbox.settle("nada")


def test_status_mapping_is_closed():
    assert map_efi_status("CONCLUIDA", EFI_PIX_STATUS) == PaymentStatus.APPROVED
    assert map_efi_status("waiting", EFI_CHARGE_STATUS) == PaymentStatus.PROCESSING
    with pytest.raises(ValueError):
        map_efi_status("ESQUISITO", EFI_PIX_STATUS)


def test_efi_pix_charge(efi):
    efi.routes.append(
        (
            "PUT",
            "/v2/cob/",
            {
                "status": "ATIVA",
                "valor": {"original": "131.58"},
                "loc": {"id": 7},
                "calendario": {"criacao": "2026-01-10T12:00:00Z", "expiracao": 3600},
                "pixCopiaECola": "000201copiaecola",
            },
        )
    )
    efi.routes.append(("GET", "/v2/loc/7/qrcode", {"qrcode": "000201qr", "imagemQrcode": "data:image/png;base64,AAA"}))

    intent = efi.create_intent(_request())

    assert intent.status == PaymentStatus.PENDING
    assert intent.amount == Decimal("131.58")
    assert intent.qr_code == "data:image/png;base64,AAA"
    assert intent.pix_key == "000201qr"
    assert intent.expires_at == datetime(2026, 1, 10, 13, 0)
    assert len(intent.transaction_id) == 32
    method, url, body, headers = efi.calls[1]
    assert method == "PUT"
    assert body["calendario"]["expiracao"] == 3600
    assert body["valor"]["original"] == "131.58"
    assert body["chave"] == "chave@example.com"
    assert headers["Authorization"] == "Bearer pix-token"


def test_efi_token_is_cached(efi):
    efi.routes.append(("GET", "/v2/cob/", {"status": "CONCLUIDA"}))
    assert efi.get_status("a" * 32) == PaymentStatus.APPROVED
    assert efi.get_status("b" * 32) == PaymentStatus.APPROVED
    token_calls = [c for c in efi.calls if c[1].endswith("/oauth/token")]
    assert len(token_calls) == 1
    assert token_calls[0][3]["Authorization"].startswith("Basic ")


def test_efi_card_charge(efi):
    efi.routes.append(("POST", "/v1/charge/one-step", {"code": 200, "data": {"charge_id": 987, "status": "waiting", "total": 15480}}))
    efi.routes.append(("GET", "/v1/charge/987", {"data": {"status": "paid"}}))

    intent = efi.create_intent(_request(PaymentMethod.CREDIT_CARD, "154.80", installments=12, card=CardData("tok_1")))

    assert intent.transaction_id == "987"
    assert intent.status == PaymentStatus.PROCESSING
    assert intent.amount == Decimal("154.80")
    _, _, body, headers = [c for c in efi.calls if "one-step" in c[1]][0]
    assert body["payment"]["credit_card"]["installments"] == 12
    assert body["payment"]["credit_card"]["payment_token"] == "tok_1"
    assert body["items"][0]["value"] == 15480
    assert headers["Authorization"] == "Bearer charge-token"
    assert efi.get_status("987") == PaymentStatus.APPROVED


def test_efi_connection_error_is_retryable(efi):
    efi.routes.insert(0, ("POST", "/oauth/token", URLError("connection refused")))
    with pytest.raises(ProcessorUnavailable) as exc:
        efi.get_status("a" * 32)
    assert exc.value.retryable is True


def test_efi_server_error_is_unavailable(efi):
    error = HTTPError("https://pix.test/v2/cob/x", 502, "Bad Gateway", {}, io.BytesIO(b"{}"))
    efi.routes.append(("GET", "/v2/cob/", error))
    with pytest.raises(ProcessorUnavailable):
        efi.get_status("a" * 32)


def test_efi_client_error_is_final(efi):
    body = io.BytesIO(b'{"error": "invalid_payment_token"}')
    error = HTTPError("https://cobrancas.test/v1/charge/one-step", 400, "Bad Request", {}, body)
    efi.routes.append(("POST", "/v1/charge/one-step", error))
    with pytest.raises(ProcessorRejected) as exc:
        efi.create_intent(_request(PaymentMethod.CREDIT_CARD, "154.80", card=CardData("tok_ruim")))
    assert exc.value.retryable is False
    assert exc.value.status_code == 402


def test_efi_rate_limit_is_retryable(efi):
    error = HTTPError("https://pix.test/v2/cob/x", 429, "Too Many Requests", {}, io.BytesIO(b"{}"))
    efi.routes.append(("GET", "/v2/cob/", error))
    with pytest.raises(ProcessorUnavailable) as exc:
        efi.get_status("a" * 32)
    assert exc.value.retryable is True


def test_processor_interface_is_abstract():
    with pytest.raises(TypeError):
        PaymentProcessor()


def test_build_processor_follows_settings(monkeypatch):
    assert isinstance(build_processor(), SandboxProcessor)
    monkeypatch.setattr(settings, "processor", "efi")
    assert isinstance(build_processor(), EfiProcessor)
