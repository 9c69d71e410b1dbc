from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class AgentDocument(SQLModel, table=True):
    __tablename__ = "agent_documents"

    id: int | None = Field(default=None, primary_key=True)
    # NULL agent_id means the document belongs to the shared knowledge base
    agent_id: int | None = Field(default=None, foreign_key="agents.id", index=True)
    title: str = Field(max_length=200)
    content: str
    metadata_: dict = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    embedding: list[float] | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
