from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.clock import utcnow


class AdminUser(SQLModel, table=True):
    """Operador do painel administrativo (login por e-mail/senha, token Bearer)."""

    __tablename__ = "admin_users"
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    name: str = ""
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    last_login_at: datetime | None = None
