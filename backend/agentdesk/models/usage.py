from datetime import datetime

from sqlmodel import Field, SQLModel


class ApiUsageLog(SQLModel, table=True):
    __tablename__ = "api_usage_logs"

    id: int | None = Field(default=None, primary_key=True)
    agent_id: int | None = Field(default=None, foreign_key="agents.id", index=True)
    token_id: int | None = Field(default=None, foreign_key="api_tokens.id")
    api_token_hint: str = Field(default="Token not provided")
    timestamp: datetime = Field(default_factory=datetime.utcnow, index=True)
    success: bool = Field(default=False)
    input_length: int | None = Field(default=None)
    output_length: int | None = Field(default=None)
    duration_ms: int | None = Field(default=None)
    error_message: str | None = Field(default=None)
    ip_address: str | None = Field(default=None)
