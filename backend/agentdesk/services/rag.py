"""Retrieval-augmented answers: fetch similar documents, then ask the chat model."""

import logging
import re
from dataclasses import dataclass, field

from sqlmodel import Session

from agentdesk.config import settings
from agentdesk.crypto import decrypt_key
from agentdesk.exceptions import RAGError
from agentdesk.models.agent import Agent
from agentdesk.services.openai_client import chat_completion
from agentdesk.services.vector_store import AgentVectorStore, VectorDocument, vector_store

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_TEMPLATE = """You are a helpful and friendly assistant. Your goal is to give accurate answers based on the available information.

Context:
{context}

User question: {question}

When answering, keep the following in mind:
1. Answer using only information from the context provided.
2. If the context is not enough, say that you do not have enough information.
3. Be concise and direct.
4. Do not make up information that is not in the context.
5. Give a complete answer and avoid truncation.
6. IMPORTANT: cite your sources by adding the document numbers in brackets, e.g. [Doc X], after each relevant statement.

Answer:"""

KNOWLEDGE_BASE_TEMPLATE = """You are an AI assistant that answers questions based on the documents provided.
Your answer must be based ONLY on the information in the documents below.
If the information is not in the documents, say honestly that you do not know.

Documents:
----------------
{context}
----------------

Question: {question}

Give a complete, clear and informative answer. Only cite information found in the documents."""

NO_RELEVANT_DOCUMENTS = (
    "I could not find relevant information about this question in the available documents."
)
EMPTY_KNOWLEDGE_BASE = (
    "There are no documents in the knowledge base. Please add some documents first."
)
APOLOGY = "Sorry, an error occurred while processing your question. Please try again."
DEFAULT_API_PROMPT = "You are a helpful assistant."

AGENT_TOP_K = 10
KNOWLEDGE_BASE_TOP_K = 5
API_TOP_K = 5

_PLACEHOLDER = re.compile(r"\{(context|question)\}")


@dataclass
class RAGAnswer:
    response: str
    sources: list[dict] = field(default_factory=list)


def build_context(documents: list[VectorDocument]) -> str:
    blocks = []
    for i, doc in enumerate(documents, start=1):
        title = doc.metadata.get("title")
        source = doc.metadata.get("source")
        label = f"Document {i}"
        if title:
            label += f" - {title}"
        if source:
            label += f" (Source: {source})"
        blocks.append(f"[{label}]: {doc.page_content.strip()}")
    return "\n\n".join(blocks)


def render_prompt(template: str, context: str, question: str) -> str:
    """Fill ``{context}`` and ``{question}`` in an agent prompt template.

    Only those two placeholders are substituted, so other braces in a
    user-written prompt are left alone. Templates that never mention
    ``{context}`` get the documents and question appended.
    """
    if "{context}" not in template:
        template = f"{template.rstrip()}\n\nContext:\n{{context}}\n\nQuestion: {{question}}"
    elif "{question}" not in template:
        template = f"{template.rstrip()}\n\nQuestion: {{question}}"
    values = {"context": context, "question": question}
    return _PLACEHOLDER.sub(lambda m: values[m.group(1)], template)


def _sources(documents: list[VectorDocument]) -> list[dict]:
    return [
        {"id": doc.metadata.get("id"), "title": doc.metadata.get("title"), "score": doc.score}
        for doc in documents
    ]


def _agent_api_key(agent: Agent) -> str | None:
    return decrypt_key(agent.api_key) if agent.api_key else None


class RAGPipeline:
    def __init__(self, store: AgentVectorStore | None = None):
        self.store = store or vector_store

    async def answer(
        self,
        session: Session,
        question: str,
        agent: Agent | None = None,
    ) -> RAGAnswer:
        """Answer ``question`` from an agent's corpus, or the shared knowledge base.

        Raises:
            RAGError: if the chat model call fails.
        """
        question = question.strip()
        agent_id = agent.id if agent else None
        k = AGENT_TOP_K if agent else KNOWLEDGE_BASE_TOP_K
        logger.info(
            f"RAG query{f' for agent {agent_id}' if agent else ''}: {question!r}"
        )

        if agent is None and self.store.count_documents(session, None) == 0:
            return RAGAnswer(response=EMPTY_KNOWLEDGE_BASE)

        documents = await self.store.similarity_search(session, agent_id, question, k=k)
        if not documents:
            return RAGAnswer(response=NO_RELEVANT_DOCUMENTS)

        for i, doc in enumerate(documents, start=1):
            snippet = doc.page_content[:150].replace("\n", " ")
            logger.debug(f"Doc {i}: {snippet}...")

        if agent is not None:
            template = agent.system_prompt or DEFAULT_PROMPT_TEMPLATE
            temperature, model, max_tokens = 0.0, settings.ask_model, 2000
            api_key = _agent_api_key(agent)
        else:
            template = KNOWLEDGE_BASE_TEMPLATE
            temperature, model, max_tokens = 0.3, settings.ask_model, None
            api_key = None

        prompt = render_prompt(template, build_context(documents), question)
        try:
            text = await chat_completion(
                [{"role": "user", "content": prompt}],
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                api_key=api_key,
            )
        except Exception as e:
            logger.exception("Chat completion failed while answering question")
            raise RAGError(f"Failed to generate response: {e}") from e
        return RAGAnswer(response=text, sources=_sources(documents))

    async def agent_api_response(
        self,
        session: Session,
        agent: Agent,
        message: str,
        k: int = API_TOP_K,
    ) -> str:
        """Answer an API message as ``agent``, with retrieved documents as context."""
        logger.info(f"Generating API response for agent {agent.name} ({agent.id})")
        try:
            documents = await self.store.similarity_search(session, agent.id, message, k=k)
            logger.info(f"Found {len(documents)} relevant documents for agent {agent.id}")

            messages = [
                {"role": "system", "content": agent.system_prompt or DEFAULT_API_PROMPT}
            ]
            if documents:
                context = "\n\n---\n\n".join(
                    f"Document {i} (Source: {doc.metadata.get('title') or 'unknown'}):\n"
                    f"{doc.page_content}"
                    for i, doc in enumerate(documents, start=1)
                )
                messages.append(
                    {"role": "system", "content": f"Relevant context from documents:\n{context}"}
                )
            messages.append({"role": "user", "content": message})

            temperature = agent.temperature if agent.temperature is not None else 0.7
            return await chat_completion(
                messages,
                model=settings.chat_model,
                temperature=temperature,
                api_key=_agent_api_key(agent),
            )
        except Exception as e:
            logger.exception(f"Failed to generate response for agent {agent.id}")
            raise RAGError(f"Failed to generate response: {e}") from e


rag_pipeline = RAGPipeline()


def get_rag_pipeline() -> RAGPipeline:
    return rag_pipeline


async def generate_rag_response(
    session: Session, question: str, pipeline: RAGPipeline | None = None
) -> str:
    """Answer from the shared knowledge base, never raising."""
    pipeline = pipeline or rag_pipeline
    try:
        return (await pipeline.answer(session, question)).response
    except Exception:
        logger.exception("Error generating knowledge base response")
        return APOLOGY
