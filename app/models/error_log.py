"""Error log: filled by the global exception handler."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from .analysis import utc_column, utcnow


class ErrorLog(SQLModel, table=True):
    __tablename__ = "error_logs"
    id: int | None = Field(default=None, primary_key=True)
    user_id: str | None = Field(default=None, index=True)
    request_id: str | None = None
    endpoint: str | None = None
    method: str | None = None
    error_message: str | None = None
    stack_trace: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(nullable=False))
