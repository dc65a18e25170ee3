import hmac

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.errors import AuthenticationError
from app.core.security import decode_admin_token
from app.models import AdminUser
from app.services.pix_watch import PixWatchRegistry

security = HTTPBearer(auto_error=False)


def get_current_admin_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    if not credentials:
        raise AuthenticationError("Faça login para continuar.", reason="MissingToken")
    admin_id = decode_admin_token(credentials.credentials)
    if admin_id is None:
        raise AuthenticationError("Token inválido ou expirado.", reason="InvalidToken")
    return admin_id


def get_current_admin(
    admin_id: int = Depends(get_current_admin_id),
    db: Session = Depends(get_db),
) -> AdminUser:
    admin = db.get(AdminUser, admin_id)
    if not admin or not admin.is_active:
        raise AuthenticationError("Token inválido ou expirado.", reason="InvalidToken")
    return admin


def get_pix_watches(request: Request) -> PixWatchRegistry | None:
    """Registro de acompanhamentos Pix criado no lifespan (None se desligado)."""
    return getattr(request.app.state, "pix_watches", None)


def webhook_secret_matches(provided: str | None) -> bool:
    """Comparação em tempo constante; sem segredo configurado nada é aceito."""
    expected = (settings.webhook_secret or "").encode("utf-8")
    if not expected:
        return False
    return hmac.compare_digest((provided or "").encode("utf-8"), expected)

