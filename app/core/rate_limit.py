"""Rate limit por IP (SlowAPI). Atrás de proxy vale o primeiro IP do X-Forwarded-For."""
from fastapi import Request
from slowapi import Limiter

from .config import settings


def client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


limiter = Limiter(key_func=client_ip)

# Limites por rota (requisições/minuto por IP)
CHECKOUT_LIMIT = f"{settings.rate_limit_per_minute}/minute"
COUPON_LIMIT = f"{settings.rate_limit_coupon_per_minute}/minute"
LOGIN_LIMIT = f"{settings.rate_limit_login_per_minute}/minute"
