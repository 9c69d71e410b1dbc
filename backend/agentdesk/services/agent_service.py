"""Agent operations that touch both the database and the vector index."""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agentdesk.auth import generate_api_token, hash_api_token
from agentdesk.exceptions import (
    AgentNotFoundError,
    DocumentNotFoundError,
    DuplicateAgentError,
    RAGError,
    TokenNotFoundError,
)
from agentdesk.models.agent import Agent, ApiToken
from agentdesk.models.document import AgentDocument
from agentdesk.models.usage import ApiUsageLog
from agentdesk.services.vector_store import AgentVectorStore, VectorDocument, to_vector_document

logger = logging.getLogger(__name__)


class AgentService:
    def __init__(self, session: Session, store: AgentVectorStore):
        self.session = session
        self.store = store

    # --- agents ---

    def get_agent(self, agent_id: int, user_id: int | None = None) -> Agent:
        agent = self.session.get(Agent, agent_id)
        if not agent or (user_id is not None and agent.user_id != user_id):
            raise AgentNotFoundError(agent_id)
        return agent

    def list_agents(self, user_id: int, show_inactive: bool = False) -> list[Agent]:
        query = select(Agent).where(Agent.user_id == user_id)
        if not show_inactive:
            query = query.where(Agent.is_active == True)  # noqa: E712
        return list(self.session.exec(query.order_by(col(Agent.created_at).desc())).all())

    def save_agent(self, agent: Agent) -> Agent:
        """Insert or update ``agent``, translating name clashes."""
        with self.session.no_autoflush:
            existing = self.session.exec(select(Agent).where(Agent.name == agent.name)).first()
        if existing and existing.id != agent.id:
            self.session.rollback()
            raise DuplicateAgentError(agent.name)
        agent.updated_at = datetime.utcnow()
        self.session.add(agent)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise DuplicateAgentError(agent.name)
        self.session.refresh(agent)
        return agent

    async def delete_agent(self, agent: Agent) -> None:
        """Delete an agent with its documents, tokens and vector index."""
        agent_id = agent.id
        await self.store.clear(agent_id)
        for doc in self.list_documents(agent_id):
            self.session.delete(doc)
        # usage logs outlive the agent, detached from it
        for log in self.session.exec(
            select(ApiUsageLog).where(ApiUsageLog.agent_id == agent_id)
        ).all():
            log.agent_id = None
            log.token_id = None
            self.session.add(log)
        for token in self.list_tokens(agent_id):
            self.session.delete(token)
        self.session.delete(agent)
        self.session.commit()
        logger.info(f"Deleted agent {agent_id} with its documents and tokens")

    # --- documents ---

    def list_documents(self, agent_id: int | None) -> list[AgentDocument]:
        owner = (
            col(AgentDocument.agent_id).is_(None)
            if agent_id is None
            else col(AgentDocument.agent_id) == agent_id
        )
        return list(
            self.session.exec(
                select(AgentDocument).where(owner).order_by(col(AgentDocument.created_at).desc())
            ).all()
        )

    async def add_documents(
        self,
        agent_id: int | None,
        items: list[tuple[str, str, dict]],
    ) -> list[AgentDocument]:
        """Store ``(title, content, metadata)`` items and index them."""
        documents = [
            AgentDocument(agent_id=agent_id, title=title, content=content, metadata_=metadata or {})
            for title, content, metadata in items
        ]
        for doc in documents:
            self.session.add(doc)
        self.session.commit()
        for doc in documents:
            self.session.refresh(doc)

        try:
            embeddings = await self.store.add_documents(
                agent_id, [to_vector_document(doc) for doc in documents]
            )
        except Exception as e:
            # rows stay stored; the next search rebuilds the index from them
            logger.exception(f"Failed to index documents for agent {agent_id}")
            raise RAGError(f"Failed to index documents: {e}") from e
        for doc, vector in zip(documents, embeddings):
            doc.embedding = vector
            self.session.add(doc)
        self.session.commit()
        for doc in documents:
            self.session.refresh(doc)
        return documents

    async def delete_document(self, agent_id: int, document_id: int) -> None:
        doc = self.session.get(AgentDocument, document_id)
        if not doc or doc.agent_id != agent_id:
            raise DocumentNotFoundError(document_id)
        self.session.delete(doc)
        self.session.commit()
        try:
            await self.store.sync_from_database(self.session, agent_id)
        except Exception:
            # drop the stale index; the next search rebuilds it
            logger.warning(f"Resync failed after deleting document {document_id}; clearing index")
            await self.store.clear(agent_id)

    async def clear_documents(self, agent_id: int | None) -> int:
        """Delete every document of ``agent_id`` (or the shared base) and its index."""
        documents = self.list_documents(agent_id)
        for doc in documents:
            self.session.delete(doc)
        self.session.commit()
        await self.store.clear(agent_id)
        return len(documents)

    async def search_documents(
        self, agent_id: int, query: str, limit: int = 5
    ) -> list[VectorDocument]:
        return await self.store.similarity_search(self.session, agent_id, query, k=limit)

    # --- API tokens ---

    def create_token(self, agent: Agent, label: str) -> tuple[ApiToken, str]:
        """Create a token for ``agent``. Returns the row and the raw secret."""
        raw = generate_api_token()
        token = ApiToken(agent_id=agent.id, token_hash=hash_api_token(raw), label=label)
        self.session.add(token)
        self.session.commit()
        self.session.refresh(token)
        return token, raw

    def list_tokens(self, agent_id: int) -> list[ApiToken]:
        return list(
            self.session.exec(
                select(ApiToken).where(ApiToken.agent_id == agent_id).order_by(ApiToken.id)
            ).all()
        )

    def update_token(
        self,
        agent_id: int,
        token_id: int,
        label: str | None = None,
        is_active: bool | None = None,
    ) -> tuple[ApiToken, bool]:
        """Apply label / active changes. Returns the token and whether it was revoked."""
        token = self.session.get(ApiToken, token_id)
        if not token or token.agent_id != agent_id:
            raise TokenNotFoundError(token_id)

        revoked = False
        if label is not None:
            token.label = label
        if is_active is not None and token.is_active != is_active:
            token.is_active = is_active
            if is_active:
                token.revoked_at = None
            else:
                token.revoked_at = datetime.utcnow()
                revoked = True

        self.session.add(token)
        self.session.commit()
        self.session.refresh(token)
        return token, revoked

    def find_active_token(self, raw_token: str) -> ApiToken | None:
        return self.session.exec(
            select(ApiToken).where(
                ApiToken.token_hash == hash_api_token(raw_token),
                ApiToken.is_active == True,  # noqa: E712
            )
        ).first()
