from datetime import date, datetime

from sqlmodel import Field, SQLModel

from app.core.clock import utcnow


class Customer(SQLModel, table=True):
    """Cliente do checkout. Depois que gera um pagamento não é mais alterado (novo registro se os dados mudarem)."""

    id: int | None = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True)
    phone: str  # só dígitos, DDD + número (10 ou 11)
    cpf: str = Field(index=True, max_length=11)  # só dígitos
    birth_date: date | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = None
