from datetime import datetime

from sqlmodel import Field, SQLModel

DEFAULT_SYSTEM_PROMPT = (
    "You are a specialized assistant that answers questions based on the "
    "provided documents."
)


class Agent(SQLModel, table=True):
    __tablename__ = "agents"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    name: str = Field(unique=True, index=True, max_length=50)
    description: str = Field(max_length=500)
    avatar_url: str = Field(default="")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT)
    is_active: bool = Field(default=True)
    api_key: str | None = Field(default=None)  # encrypted
    temperature: float = Field(default=0.7)
    rate_limit_requests: int | None = Field(default=None)
    rate_limit_window_seconds: int | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def has_rate_limit(self) -> bool:
        return bool(self.rate_limit_requests and self.rate_limit_window_seconds)


class ApiToken(SQLModel, table=True):
    __tablename__ = "api_tokens"

    id: int | None = Field(default=None, primary_key=True)
    agent_id: int = Field(foreign_key="agents.id", index=True)
    token_hash: str = Field(unique=True, index=True)  # sha256 of the secret
    label: str = Field(max_length=100)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_used_at: datetime | None = Field(default=None)
    revoked_at: datetime | None = Field(default=None)
