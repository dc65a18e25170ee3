"""
Processador de pagamento (colaborador externo).

SandboxProcessor: em memória, para desenvolvimento e testes (gera BR Code Pix válido).
EfiProcessor: API Efí (Pix + cobranças de cartão) via urllib, como as demais integrações HTTP.
"""
import base64
import json
import logging
import ssl
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from urllib.error import HTTPError, URLError
from urllib.request import Request as UrlRequest
from urllib.request import urlopen

from app.core.clock import to_naive_utc, utcnow
from app.core.config import settings
from app.core.errors import ProcessorRejected, ProcessorUnavailable
from app.core.money import to_money
from app.models.enums import PaymentMethod, PaymentStatus

log = logging.getLogger("checkout.processor")


@dataclass(frozen=True)
class CardData:
    payment_token: str
    billing_address: dict = field(default_factory=dict)


@dataclass(frozen=True)
class IntentRequest:
    reference: str  # id da PaymentSession
    amount: Decimal  # valor final já com desconto
    payment_method: PaymentMethod
    installments: int
    customer_name: str
    customer_email: str
    customer_phone: str
    customer_cpf: str
    expires_in: timedelta
    card: CardData | None = None
    description: str = ""


@dataclass(frozen=True)
class ProcessorIntent:
    transaction_id: str
    status: PaymentStatus
    amount: Decimal  # valor que o processador registrou (conferido pelo checkout)
    qr_code: str | None = None
    pix_key: str | None = None
    expires_at: datetime | None = None  # UTC sem tzinfo


class PaymentProcessor(ABC):
    name = "base"

    @abstractmethod
    def create_intent(self, request: IntentRequest) -> ProcessorIntent:
        ...

    @abstractmethod
    def get_status(self, transaction_id: str) -> PaymentStatus:
        ...



# ---------- BR Code (Pix copia e cola) ----------
def _emv(tag: str, value: str) -> str:
    return f"{tag}{len(value):02d}{value}"


def crc16_ccitt(payload: str) -> str:
    crc = 0xFFFF
    for byte in payload.encode("utf-8"):
        crc ^= byte << 8
        for _ in range(8):
            crc = ((crc << 1) ^ 0x1021) if crc & 0x8000 else (crc << 1)
            crc &= 0xFFFF
    return f"{crc:04X}"


def build_brcode(pix_key: str, amount: Decimal, txid: str, merchant_name: str = "CHECKOUT", city: str = "SAO PAULO") -> str:
    account = _emv("00", "br.gov.bcb.pix") + _emv("01", pix_key)
    payload = (
        _emv("00", "01")
        + _emv("26", account)
        + _emv("52", "0000")
        + _emv("53", "986")
        + _emv("54", f"{to_money(amount):.2f}")
        + _emv("58", "BR")
        + _emv("59", merchant_name[:25])
        + _emv("60", city[:15])
        + _emv("62", _emv("05", txid[:25]))
        + "6304"
    )
    return payload + crc16_ccitt(payload)


# ---------- Sandbox ----------
class SandboxProcessor(PaymentProcessor):
    """Processador em memória. settle() simula a liquidação (Pix pago, cartão aprovado/recusado)."""

    name = "sandbox"

    def __init__(self, pix_key: str = "sandbox@checkout.local", clock=utcnow):
        self.pix_key = pix_key
        self.clock = clock
        self._status: dict[str, PaymentStatus] = {}
        self._lock = threading.Lock()

    def create_intent(self, request: IntentRequest) -> ProcessorIntent:
        txid = uuid.uuid4().hex
        with self._lock:
            self._status[txid] = PaymentStatus.PENDING
        if request.payment_method is PaymentMethod.PIX:
            brcode = build_brcode(self.pix_key, request.amount, txid)
            return ProcessorIntent(
                transaction_id=txid,
                status=PaymentStatus.PENDING,
                amount=to_money(request.amount),
                qr_code=brcode,
                pix_key=brcode,
                expires_at=self.clock() + request.expires_in,
            )
        return ProcessorIntent(transaction_id=txid, status=PaymentStatus.PENDING, amount=to_money(request.amount))

    def get_status(self, transaction_id: str) -> PaymentStatus:
        with self._lock:
            try:
                return self._status[transaction_id]
            except KeyError:
                raise ProcessorUnavailable("Transação desconhecida no sandbox.") from None

    def settle(self, transaction_id: str, status: PaymentStatus = PaymentStatus.APPROVED) -> None:
        with self._lock:
            if transaction_id not in self._status:
                raise KeyError(transaction_id)
            self._status[transaction_id] = PaymentStatus(status)


# ---------- Efí ----------
# Status Pix (cob) -> status do checkout
EFI_PIX_STATUS = {
    "ATIVA": PaymentStatus.PENDING,
    "CONCLUIDA": PaymentStatus.APPROVED,
    "REMOVIDA_PELO_USUARIO_RECEBEDOR": PaymentStatus.CANCELLED,
    "REMOVIDA_PELO_PSP": PaymentStatus.REJECTED,
}
# Status de cobrança (cartão)
EFI_CHARGE_STATUS = {
    "new": PaymentStatus.PENDING,
    "waiting": PaymentStatus.PROCESSING,
    "approved": PaymentStatus.APPROVED,
    "paid": PaymentStatus.APPROVED,
    "settled": PaymentStatus.APPROVED,
    "unpaid": PaymentStatus.REJECTED,
    "refunded": PaymentStatus.REJECTED,
    "contested": PaymentStatus.REJECTED,
    "canceled": PaymentStatus.CANCELLED,
}


def map_efi_status(raw: str, table: dict[str, PaymentStatus]) -> PaymentStatus:
    try:
        return table[raw]
    except KeyError:
        raise ValueError(f"Status desconhecido do processador: {raw!r}") from None


class EfiProcessor(PaymentProcessor):
    name = "efi"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        pix_key: str,
        base_url: str,
        charges_url: str,
        certificate_path: str = "",
        timeout: int = 20,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.pix_key = pix_key
        self.base_url = base_url.rstrip("/")
        self.charges_url = charges_url.rstrip("/")
        self.certificate_path = certificate_path
        self.timeout = timeout
        self._tokens: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _ssl_context(self) -> ssl.SSLContext | None:
        if not self.certificate_path:
            return None
        ctx = ssl.create_default_context()
        ctx.load_cert_chain(self.certificate_path)
        return ctx

    def _http(self, method: str, url: str, body: dict | None = None, headers: dict | None = None) -> dict:
        data = json.dumps(body).encode() if body is not None else None
        req = UrlRequest(
            url,
            data=data,
            method=method,
            headers={"Content-Type": "application/json", **(headers or {})},
        )
        try:
            with urlopen(req, timeout=self.timeout, context=self._ssl_context()) as resp:
                raw = resp.read().decode() or "{}"
        except HTTPError as e:
            if e.code >= 500 or e.code == 429:
                log.warning("Efí %s %s -> %s", method, url, e.code)
                raise ProcessorUnavailable(f"Efí respondeu {e.code}.") from e
            detail = e.read().decode(errors="replace")[:200] if hasattr(e, "read") else ""
            log.error("Efí %s %s recusou: %s %s", method, url, e.code, detail)
            raise ProcessorRejected(f"Efí recusou a requisição ({e.code}).") from e
        except (URLError, TimeoutError, OSError) as e:
            log.warning("Efí %s %s falhou: %s", method, url, e)
            raise ProcessorUnavailable(f"Erro de conexão com a Efí: {str(e)[:80]}") from e
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProcessorUnavailable("Resposta inválida da Efí.") from e

    def _token(self, api_url: str, path: str) -> str:
        with self._lock:
            cached = self._tokens.get(api_url)
            if cached and cached[1] > time.monotonic():
                return cached[0]
        basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        result = self._http(
            "POST",
            f"{api_url}{path}",
            {"grant_type": "client_credentials"},
            {"Authorization": f"Basic {basic}"},
        )
        token = result.get("access_token")
        if not token:
            raise ProcessorUnavailable("Efí não retornou access_token.")
        expires_in = int(result.get("expires_in") or 3600)
        with self._lock:
            self._tokens[api_url] = (token, time.monotonic() + expires_in - 60)
        return token

    def _pix_headers(self) -> dict:
        return {"Authorization": f"Bearer {self._token(self.base_url, '/oauth/token')}"}

    def _charge_headers(self) -> dict:
        return {"Authorization": f"Bearer {self._token(self.charges_url, '/v1/authorize')}"}

    def create_intent(self, request: IntentRequest) -> ProcessorIntent:
        if request.payment_method is PaymentMethod.PIX:
            return self._create_pix(request)
        return self._create_card(request)

    def _create_pix(self, request: IntentRequest) -> ProcessorIntent:
        # txid Efí: 26-35 caracteres alfanuméricos
        txid = uuid.uuid4().hex[:32]
        body = {
            "calendario": {"expiracao": int(request.expires_in.total_seconds())},
            "devedor": {"cpf": request.customer_cpf, "nome": request.customer_name[:200]},
            "valor": {"original": f"{to_money(request.amount):.2f}"},
            "chave": self.pix_key,
            "solicitacaoPagador": request.description[:140] or "Assinatura",
        }
        cob = self._http("PUT", f"{self.base_url}/v2/cob/{txid}", body, self._pix_headers())
        loc_id = (cob.get("loc") or {}).get("id")
        qr = self._http("GET", f"{self.base_url}/v2/loc/{loc_id}/qrcode", headers=self._pix_headers()) if loc_id else {}
        calendario = cob.get("calendario") or {}
        expires_at = None
        if calendario.get("criacao") and calendario.get("expiracao"):
            created = datetime.fromisoformat(calendario["criacao"].replace("Z", "+00:00"))
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            expires_at = to_naive_utc(created + timedelta(seconds=int(calendario["expiracao"])))
        return ProcessorIntent(
            transaction_id=cob.get("txid") or txid,
            status=map_efi_status(cob.get("status", "ATIVA"), EFI_PIX_STATUS),
            amount=to_money((cob.get("valor") or {}).get("original", "0")),
            qr_code=qr.get("imagemQrcode") or qr.get("qrcode") or cob.get("pixCopiaECola"),
            pix_key=qr.get("qrcode") or cob.get("pixCopiaECola"),
            expires_at=expires_at,
        )

    def _create_card(self, request: IntentRequest) -> ProcessorIntent:
        if request.card is None:
            raise ValueError("Pagamento com cartão exige payment_token.")
        cents = int(to_money(request.amount) * 100)
        body = {
            "items": [{"name": request.description or "Assinatura", "value": cents, "amount": 1}],
            "metadata": {"custom_id": request.reference},
            "payment": {
                "credit_card": {
                    "installments": request.installments,
                    "payment_token": request.card.payment_token,
                    "billing_address": request.card.billing_address,
                    "customer": {
                        "name": request.customer_name,
                        "email": request.customer_email,
                        "cpf": request.customer_cpf,
                        "phone_number": request.customer_phone,
                    },
                }
            },
        }
        result = self._http("POST", f"{self.charges_url}/v1/charge/one-step", body, self._charge_headers())
        data = result.get("data") or {}
        return ProcessorIntent(
            transaction_id=str(data.get("charge_id", "")),
            status=map_efi_status(data.get("status", "new"), EFI_CHARGE_STATUS),
            amount=to_money(Decimal(int(data.get("total", 0))) / 100),
        )

    def get_status(self, transaction_id: str) -> PaymentStatus:
        if transaction_id.isdigit():
            result = self._http("GET", f"{self.charges_url}/v1/charge/{transaction_id}", headers=self._charge_headers())
            return map_efi_status((result.get("data") or {}).get("status", "new"), EFI_CHARGE_STATUS)
        cob = self._http("GET", f"{self.base_url}/v2/cob/{transaction_id}", headers=self._pix_headers())
        return map_efi_status(cob.get("status", "ATIVA"), EFI_PIX_STATUS)


_processor: PaymentProcessor | None = None
_processor_lock = threading.Lock()


def build_processor() -> PaymentProcessor:
    if settings.processor == "efi":
        return EfiProcessor(
            client_id=settings.efi_client_id,
            client_secret=settings.efi_client_secret,
            pix_key=settings.efi_pix_key,
            base_url=settings.efi_base_url,
            charges_url=settings.efi_charges_url,
            certificate_path=settings.efi_certificate_path,
            timeout=settings.efi_timeout_seconds,
        )
    return SandboxProcessor()


def get_processor() -> PaymentProcessor:
    """Dependência FastAPI: processador configurado (um por processo)."""
    global _processor
    with _processor_lock:
        if _processor is None:
            _processor = build_processor()
            log.info("Processador de pagamento: %s", _processor.name)
        return _processor
