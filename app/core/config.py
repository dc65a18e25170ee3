from decimal import Decimal
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env na raiz do projeto: app/core/config.py -> app/core -> app -> raiz
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

PROCESSORS = ("sandbox", "efi")


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./checkout.db"
    # CORS: lista de origens separadas por vírgula; em produção https://seudominio.com.br
    cors_origins: str = "*"
    environment: str = "development"
    log_level: str = "INFO"
    # Limites por IP (requisições por minuto)
    rate_limit_per_minute: int = 60
    rate_limit_coupon_per_minute: int = 20
    rate_limit_login_per_minute: int = 5
    # Plano vendido pelo checkout (valor em reais)
    plan_name: str = "Plano Anual"
    plan_amount: Decimal = Decimal("154.80")
    pix_discount_percent: Decimal = Decimal("15")
    max_installments: int = 12
    # Pix: janela de pagamento, intervalo de consulta e tick do contador
    pix_expiration_minutes: int = 60
    pix_poll_interval_seconds: float = 5.0
    pix_countdown_tick_seconds: float = 1.0
    pix_watch_enabled: bool = True
    # Processador de pagamento: "sandbox" (memória, desenvolvimento) ou "efi"
    processor: str = "sandbox"
    efi_client_id: str = ""
    efi_client_secret: str = ""
    efi_base_url: str = "https://pix-h.api.efipay.com.br"
    efi_charges_url: str = "https://cobrancas-h.api.efipay.com.br"
    efi_pix_key: str = ""
    efi_certificate_path: str = ""  # .pem com certificado + chave (mTLS exigido pela API Pix)
    efi_timeout_seconds: int = 20
    # Segredo compartilhado do webhook do processador (header X-Webhook-Secret)
    webhook_secret: str = ""
    # Administrador inicial (criado no init_db se não existir)
    admin_email: str = ""
    admin_password: str = ""
    access_token_expire_minutes: int = 60 * 8

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("processor", mode="before")
    @classmethod
    def normalize_processor(cls, v: str | None) -> str:
        value = (v or "sandbox").strip().lower()
        if value not in PROCESSORS:
            raise ValueError(f"PROCESSOR deve ser um de: {', '.join(PROCESSORS)}")
        return value

    @field_validator("admin_email", "webhook_secret", "efi_client_id", "efi_client_secret", mode="before")
    @classmethod
    def strip_value(cls, v: str | None) -> str:
        """Evita erros de espaço/cópia errada no .env."""
        return (v or "").strip()


settings = Settings()


def is_efi_configured() -> bool:
    """Credenciais mínimas da Efí presentes?"""
    return bool(settings.efi_client_id and settings.efi_client_secret and settings.efi_pix_key)
