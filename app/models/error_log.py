"""Central de erros: preenchida pelo handler global de exceções."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.clock import utcnow


class ErrorLog(SQLModel, table=True):
    __tablename__ = "error_logs"
    id: int | None = Field(default=None, primary_key=True)
    endpoint: str | None = None
    method: str | None = None
    error_message: str | None = None
    stack_trace: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
