from unittest.mock import AsyncMock, patch

import pytest
from sqlmodel import Session

from agentdesk.config import settings
from agentdesk.crypto import encrypt_key
from agentdesk.exceptions import RAGError
from agentdesk.models.agent import Agent
from agentdesk.models.document import AgentDocument
from agentdesk.services.rag import (
    APOLOGY,
    EMPTY_KNOWLEDGE_BASE,
    NO_RELEVANT_DOCUMENTS,
    RAGPipeline,
    build_context,
    generate_rag_response,
    render_prompt,
)
from agentdesk.services.vector_store import VectorDocument


def _agent(session: Session, **kwargs) -> Agent:
    agent = Agent(user_id=1, name=kwargs.pop("name", "Helper"), description="rag test", **kwargs)
    session.add(agent)
    session.commit()
    session.refresh(agent)
    return agent


def _document(session: Session, agent_id: int | None, title: str, content: str, **metadata):
    session.add(AgentDocument(agent_id=agent_id, title=title, content=content, metadata_=metadata))
    session.commit()


class TestPromptHelpers:
    def test_build_context(self):
        docs = [
            VectorDocument(page_content=" first ", metadata={"title": "A", "source": "a.pdf"}),
            VectorDocument(page_content="second", metadata={}),
        ]
        assert build_context(docs) == (
            "[Document 1 - A (Source: a.pdf)]: first\n\n[Document 2]: second"
        )

    def test_render_prompt_fills_placeholders(self):
        prompt = render_prompt("C={context} Q={question} {not_a_field}", "ctx", "why?")
        assert prompt == "C=ctx Q=why? {not_a_field}"

    def test_render_prompt_appends_missing_sections(self):
        prompt = render_prompt("Be brief.", "ctx", "why?")
        assert prompt == "Be brief.\n\nContext:\nctx\n\nQuestion: why?"

    def test_render_prompt_appends_question_only(self):
        prompt = render_prompt("Docs: {context}", "ctx", "why?")
        assert prompt == "Docs: ctx\n\nQuestion: why?"


class TestAnswer:
    @pytest.mark.asyncio
    async def test_agent_answer_uses_agent_prompt(
        self, session: Session, pipeline: RAGPipeline, mock_chat
    ):
        agent = _agent(session, system_prompt="Answer from:\n{context}\nQ: {question}")
        _document(session, agent.id, "Hours", "We open at nine", source="site")

        answer = await pipeline.answer(session, "  When do you open?  ", agent)

        assert answer.response == "This is an AI response."
        assert answer.sources[0]["title"] == "Hours"
        messages = mock_chat.await_args.args[0]
        assert messages == [
            {
                "role": "user",
                "content": "Answer from:\n[Document 1 - Hours (Source: site)]: We open at nine\n"
                "Q: When do you open?",
            }
        ]
        kwargs = mock_chat.await_args.kwargs
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 2000
        assert kwargs["model"] == settings.ask_model
        assert kwargs["api_key"] is None

    @pytest.mark.asyncio
    async def test_agent_answer_uses_agent_api_key(
        self, session: Session, pipeline: RAGPipeline, mock_chat
    ):
        agent = _agent(session, api_key=encrypt_key("sk-agent"))
        _document(session, agent.id, "Doc", "some content")

        await pipeline.answer(session, "content?", agent)
        assert mock_chat.await_args.kwargs["api_key"] == "sk-agent"

    @pytest.mark.asyncio
    async def test_agent_without_documents(
        self, session: Session, pipeline: RAGPipeline, mock_chat
    ):
        agent = _agent(session)
        answer = await pipeline.answer(session, "anything", agent)
        assert answer.response == NO_RELEVANT_DOCUMENTS
        assert answer.sources == []
        mock_chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_knowledge_base(self, session: Session, pipeline: RAGPipeline, mock_chat):
        answer = await pipeline.answer(session, "anything")
        assert answer.response == EMPTY_KNOWLEDGE_BASE
        mock_chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_knowledge_base_answer(self, session: Session, pipeline: RAGPipeline, mock_chat):
        _document(session, None, "Policy", "Refunds within 30 days")

        answer = await pipeline.answer(session, "refund window?")

        assert answer.response == "This is an AI response."
        prompt = mock_chat.await_args.args[0][0]["content"]
        assert "Refunds within 30 days" in prompt
        assert "Question: refund window?" in prompt
        assert mock_chat.await_args.kwargs["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_chat_failure_raises(self, session: Session, pipeline: RAGPipeline, mock_chat):
        agent = _agent(session)
        _document(session, agent.id, "Doc", "content")
        mock_chat.side_effect = RuntimeError("quota exceeded")

        with pytest.raises(RAGError, match="quota exceeded"):
            await pipeline.answer(session, "content", agent)


class TestAgentApiResponse:
    @pytest.mark.asyncio
    async def test_messages_include_context(
        self, session: Session, pipeline: RAGPipeline, mock_chat
    ):
        agent = _agent(session, system_prompt="You are Helper.", temperature=0.4)
        _document(session, agent.id, "Manual", "Press the red button")

        reply = await pipeline.agent_api_response(session, agent, "Which button?")

        assert reply == "This is an AI response."
        messages = mock_chat.await_args.args[0]
        assert messages[0] == {"role": "system", "content": "You are Helper."}
        assert messages[1]["role"] == "system"
        assert "Document 1 (Source: Manual):\nPress the red button" in messages[1]["content"]
        assert messages[2] == {"role": "user", "content": "Which button?"}
        kwargs = mock_chat.await_args.kwargs
        assert kwargs["model"] == settings.chat_model
        assert kwargs["temperature"] == 0.4

    @pytest.mark.asyncio
    async def test_no_documents_skips_context(
        self, session: Session, pipeline: RAGPipeline, mock_chat
    ):
        agent = _agent(session)
        await pipeline.agent_api_response(session, agent, "Hi")
        messages = mock_chat.await_args.args[0]
        assert [m["role"] for m in messages] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_failure_raises(self, session: Session, pipeline: RAGPipeline, mock_chat):
        agent = _agent(session)
        mock_chat.side_effect = RuntimeError("boom")
        with pytest.raises(RAGError, match="Failed to generate response: boom"):
            await pipeline.agent_api_response(session, agent, "Hi")


@pytest.mark.asyncio
async def test_generate_rag_response_apologizes_on_error(session: Session, pipeline: RAGPipeline):
    with patch.object(pipeline, "answer", new=AsyncMock(side_effect=RAGError("down"))):
        assert await generate_rag_response(session, "question", pipeline) == APOLOGY


class TestKnowledgeBaseRetrievalFailure:
    @pytest.mark.asyncio
    async def test_search_failure_is_not_reported_as_empty(
        self, session: Session, pipeline: RAGPipeline, mock_chat
    ):
        _document(session, None, "Hours", "We open at nine")

        async def broken(text):
            raise RuntimeError("embedding service down")

        pipeline.store.embedder.embed_query = broken

        answer = await pipeline.answer(session, "when are you open")
        assert answer.response != EMPTY_KNOWLEDGE_BASE
        assert answer.response == NO_RELEVANT_DOCUMENTS
        mock_chat.assert_not_awaited()


def test_render_prompt_leaves_placeholders_inside_context():
    prompt = render_prompt("C={context} Q={question}", "doc says {question}", "why?")
    assert prompt == "C=doc says {question} Q=why?"
