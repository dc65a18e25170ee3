"""Eventos de segurança: login admin com falha, rate limit, webhook com segredo inválido."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.clock import utcnow


class SecurityLog(SQLModel, table=True):
    __tablename__ = "security_logs"
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # failed_login | rate_limit | bad_webhook_secret
    ip: str | None = None
    endpoint: str | None = None
    detail: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
