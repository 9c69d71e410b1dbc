import math
import re
import zlib
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from agentdesk.auth import hash_password
from agentdesk.database import get_session
from agentdesk.main import app
from agentdesk.models.user import User
from agentdesk.services.rag import RAGPipeline, get_rag_pipeline
from agentdesk.services.rate_limiter import get_rate_limiter
from agentdesk.services.vector_store import AgentVectorStore, get_vector_store


class FakeEmbedder:
    """Deterministic bag-of-words embedder: shared words mean nearby vectors."""

    dim = 64

    def __init__(self):
        self.calls: list[list[str]] = []

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dim
        for word in re.findall(r"\w+", text.lower()):
            vec[zlib.crc32(word.encode()) % self.dim] += 1.0
        norm = math.sqrt(sum(v * v for v in vec)) or 1.0
        return [v / norm for v in vec]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector(t) for t in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self.vector(text)


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        # Seed admin user
        admin = User(
            username="admin",
            password_hash=hash_password("admin"),
            role="admin",
        )
        session.add(admin)
        session.commit()
        yield session


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store(tmp_path, embedder: FakeEmbedder) -> AgentVectorStore:
    return AgentVectorStore(base_dir=tmp_path / "vectors", embedder=embedder)


@pytest.fixture
def pipeline(store: AgentVectorStore) -> RAGPipeline:
    return RAGPipeline(store)


@pytest.fixture
def mock_chat():
    """Replace the chat model with a canned reply."""
    with patch(
        "agentdesk.services.rag.chat_completion",
        new=AsyncMock(return_value="This is an AI response."),
    ) as mock:
        yield mock


@pytest.fixture(name="client")
def client_fixture(session: Session, store: AgentVectorStore, pipeline: RAGPipeline):
    def get_session_override():
        yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_vector_store] = lambda: store
    app.dependency_overrides[get_rag_pipeline] = lambda: pipeline
    app.dependency_overrides[get_rate_limiter] = lambda: None
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_token(client: TestClient) -> str:
    response = client.post(
        "/api/auth/login",
        json={"username": "admin", "password": "admin"},
    )
    return response.json()["access_token"]


@pytest.fixture
def user_token(client: TestClient, session: Session) -> str:
    user = User(
        username="testuser",
        password_hash=hash_password("testpass"),
        role="user",
    )
    session.add(user)
    session.commit()
    response = client.post(
        "/api/auth/login",
        json={"username": "testuser", "password": "testpass"},
    )
    return response.json()["access_token"]


@pytest.fixture
def agent(client: TestClient, user_token: str) -> dict:
    resp = client.post(
        "/api/agents",
        json={"name": "Support Bot", "description": "Answers product questions"},
        headers={"Authorization": f"Bearer {user_token}"},
    )
    return resp.json()["data"]
