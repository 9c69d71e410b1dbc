"""Shared knowledge base: documents that belong to no agent."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from agentdesk.api.deps import get_admin_user, get_agent_service, get_current_user
from agentdesk.models.user import User
from agentdesk.services.agent_service import AgentService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["knowledge"])


class IngestRequest(BaseModel):
    documents: Any = None


def _title_for(text: str) -> str:
    first_line = text.strip().splitlines()[0]
    return first_line[:200]


@router.post("/ingest")
async def ingest(
    body: IngestRequest,
    service: AgentService = Depends(get_agent_service),
    _admin: User = Depends(get_admin_user),
):
    if not isinstance(body.documents, list):
        raise HTTPException(
            status_code=400, detail="Documents are required and must be an array"
        )
    texts = [d for d in body.documents if isinstance(d, str) and d.strip()]
    if not texts:
        raise HTTPException(status_code=400, detail="No valid documents provided")

    logger.info(f"Ingesting {len(texts)} documents into the shared knowledge base")
    await service.add_documents(None, [(_title_for(t), t, {}) for t in texts])
    total = len(service.list_documents(None))
    return {
        "success": True,
        "message": f"{len(texts)} documents ingested",
        "count": len(texts),
        "total_documents": total,
    }


@router.get("/documents")
async def list_knowledge_documents(
    service: AgentService = Depends(get_agent_service),
    _user: User = Depends(get_current_user),
):
    documents = service.list_documents(None)
    return {
        "success": True,
        "count": len(documents),
        "data": [{"id": d.id, "content": d.content} for d in documents],
    }


@router.post("/documents/clear")
async def clear_knowledge_documents(
    service: AgentService = Depends(get_agent_service),
    _admin: User = Depends(get_admin_user),
):
    removed = await service.clear_documents(None)
    remaining = len(service.list_documents(None))
    logger.info(f"Cleared shared knowledge base: {removed} removed, {remaining} remaining")
    return {
        "success": True,
        "message": "All documents were removed",
        "documents_removed": removed,
        "documents_remaining": remaining,
    }
