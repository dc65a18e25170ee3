from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.clock import utcnow


class PaymentEvent(SQLModel, table=True):
    """Histórico de transições de um pagamento (criação, callback, polling, expiração, cancelamento)."""

    __tablename__ = "payment_events"
    id: int | None = Field(default=None, primary_key=True)
    payment_id: str = Field(index=True, max_length=36)
    from_status: str | None = None
    to_status: str
    source: str  # checkout | webhook | poll | expiry | customer | admin
    detail: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
