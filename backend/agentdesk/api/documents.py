from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from agentdesk.api.deps import get_agent_service, get_current_user
from agentdesk.models.document import AgentDocument
from agentdesk.models.user import User
from agentdesk.services.agent_service import AgentService

router = APIRouter(prefix="/agents/{agent_id}/documents", tags=["documents"])


class CreateDocumentRequest(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    content: str | None = None
    metadata: dict = Field(default_factory=dict)


class DocumentResponse(BaseModel):
    id: int
    agent_id: int | None
    title: str
    content: str
    metadata: dict
    created_at: datetime
    updated_at: datetime


def _document_out(doc: AgentDocument) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        agent_id=doc.agent_id,
        title=doc.title,
        content=doc.content,
        metadata=doc.metadata_ or {},
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


@router.get("")
async def list_documents(
    agent_id: int,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    agent = service.get_agent(agent_id, user.id)
    documents = service.list_documents(agent.id)
    return {
        "success": True,
        "count": len(documents),
        "data": [_document_out(d) for d in documents],
    }


@router.post("", status_code=201)
async def add_document(
    agent_id: int,
    body: CreateDocumentRequest,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    title = (body.title or "").strip()
    if not title or not body.content:
        raise HTTPException(status_code=400, detail="Title and content are required")

    agent = service.get_agent(agent_id, user.id)
    [document] = await service.add_documents(agent.id, [(title, body.content, body.metadata)])
    return {"success": True, "data": _document_out(document)}


@router.delete("")
async def clear_documents(
    agent_id: int,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    agent = service.get_agent(agent_id, user.id)
    removed = await service.clear_documents(agent.id)
    return {
        "success": True,
        "message": "All agent documents were deleted",
        "documents_removed": removed,
    }


@router.get("/search")
async def search_documents(
    agent_id: int,
    q: str = Query(default=""),
    limit: int = Query(default=5, ge=1, le=50),
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    if not q.strip():
        raise HTTPException(status_code=400, detail="Search query cannot be empty")
    agent = service.get_agent(agent_id, user.id)
    results = await service.search_documents(agent.id, q, limit=limit)
    return {
        "success": True,
        "count": len(results),
        "data": [
            {"content": r.page_content, "metadata": r.metadata, "score": r.score}
            for r in results
        ],
    }


@router.delete("/{document_id}")
async def delete_document(
    agent_id: int,
    document_id: int,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    agent = service.get_agent(agent_id, user.id)
    await service.delete_document(agent.id, document_id)
    return {"success": True, "message": "Document deleted"}
