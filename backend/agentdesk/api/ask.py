from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from agentdesk.api.deps import get_agent_service, get_current_user
from agentdesk.exceptions import RAGError
from agentdesk.models.user import User
from agentdesk.services.agent_service import AgentService
from agentdesk.services.rag import RAGPipeline, generate_rag_response, get_rag_pipeline

router = APIRouter(tags=["ask"])


class AskRequest(BaseModel):
    query: str | None = None
    agent_id: int | None = None


@router.post("/ask")
async def ask(
    body: AskRequest,
    service: AgentService = Depends(get_agent_service),
    pipeline: RAGPipeline = Depends(get_rag_pipeline),
    user: User = Depends(get_current_user),
):
    """Answer a question from an agent's documents, or the shared knowledge base."""
    query = (body.query or "").strip()
    if not query:
        raise HTTPException(status_code=400, detail="The question cannot be empty")

    if body.agent_id is None:
        text = await generate_rag_response(service.session, query, pipeline)
        return {"success": True, "data": {"response": text, "sources": []}}

    agent = service.get_agent(body.agent_id, user.id)
    if not agent.is_active:
        raise HTTPException(status_code=400, detail="This agent is deactivated")

    try:
        answer = await pipeline.answer(service.session, query, agent)
    except RAGError:
        raise HTTPException(status_code=500, detail="Error processing the question")
    return {"success": True, "data": {"response": answer.response, "sources": answer.sources}}
