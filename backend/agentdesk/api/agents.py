from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlmodel import col, select

from agentdesk.api.deps import get_agent_service, get_current_user
from agentdesk.crypto import decrypt_key, encrypt_key, mask_key
from agentdesk.models.agent import DEFAULT_SYSTEM_PROMPT, Agent
from agentdesk.models.usage import ApiUsageLog
from agentdesk.models.user import User
from agentdesk.services.agent_service import AgentService

router = APIRouter(prefix="/agents", tags=["agents"])


class RateLimitConfig(BaseModel):
    requests: int = Field(gt=0)
    window_seconds: int = Field(gt=0)


class CreateAgentRequest(BaseModel):
    name: str | None = Field(default=None, max_length=50)
    description: str | None = Field(default=None, max_length=500)
    avatar_url: str | None = None
    system_prompt: str | None = None
    is_active: bool = True
    api_key: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    rate_limit: RateLimitConfig | None = None


class UpdateAgentRequest(BaseModel):
    name: str | None = Field(default=None, max_length=50)
    description: str | None = Field(default=None, max_length=500)
    avatar_url: str | None = None
    system_prompt: str | None = None
    is_active: bool | None = None
    api_key: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    rate_limit: RateLimitConfig | None = None


class AgentResponse(BaseModel):
    id: int
    user_id: int
    name: str
    description: str
    avatar_url: str
    system_prompt: str
    is_active: bool
    temperature: float
    rate_limit: RateLimitConfig | None
    has_api_key: bool
    api_key_masked: str | None
    created_at: datetime
    updated_at: datetime


class AgentDetailsResponse(AgentResponse):
    api_key: str | None


def _agent_out(agent: Agent) -> AgentResponse:
    rate_limit = None
    if agent.has_rate_limit:
        rate_limit = RateLimitConfig(
            requests=agent.rate_limit_requests,
            window_seconds=agent.rate_limit_window_seconds,
        )
    return AgentResponse(
        id=agent.id,
        user_id=agent.user_id,
        name=agent.name,
        description=agent.description,
        avatar_url=agent.avatar_url,
        system_prompt=agent.system_prompt,
        is_active=agent.is_active,
        temperature=agent.temperature,
        rate_limit=rate_limit,
        has_api_key=bool(agent.api_key),
        api_key_masked=mask_key(decrypt_key(agent.api_key)) if agent.api_key else None,
        created_at=agent.created_at,
        updated_at=agent.updated_at,
    )


@router.get("")
async def list_agents(
    show_inactive: bool = Query(default=False),
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    agents = service.list_agents(user.id, show_inactive=show_inactive)
    return {"success": True, "data": [_agent_out(a) for a in agents]}


@router.post("", status_code=201)
async def create_agent(
    body: CreateAgentRequest,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    name = (body.name or "").strip()
    description = (body.description or "").strip()
    if not name or not description:
        raise HTTPException(status_code=400, detail="Name and description are required")

    agent = Agent(
        user_id=user.id,
        name=name,
        description=description,
        avatar_url=body.avatar_url or "",
        system_prompt=(body.system_prompt or "").strip() or DEFAULT_SYSTEM_PROMPT,
        is_active=body.is_active,
        api_key=encrypt_key(body.api_key.strip()) if body.api_key and body.api_key.strip() else None,
        temperature=body.temperature if body.temperature is not None else 0.7,
    )
    if body.rate_limit:
        agent.rate_limit_requests = body.rate_limit.requests
        agent.rate_limit_window_seconds = body.rate_limit.window_seconds

    agent = service.save_agent(agent)
    return {"success": True, "data": _agent_out(agent)}


@router.get("/{agent_id}")
async def get_agent(
    agent_id: int,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    agent = service.get_agent(agent_id, user.id)
    return {"success": True, "data": _agent_out(agent)}


@router.get("/{agent_id}/edit-details")
async def get_agent_edit_details(
    agent_id: int,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    """Full agent details for the edit form, including the external API key."""
    agent = service.get_agent(agent_id, user.id)
    details = AgentDetailsResponse(
        **_agent_out(agent).model_dump(),
        api_key=decrypt_key(agent.api_key) if agent.api_key else None,
    )
    return {"success": True, "data": details}


@router.put("/{agent_id}")
async def update_agent(
    agent_id: int,
    body: UpdateAgentRequest,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    agent = service.get_agent(agent_id, user.id)

    update_data = body.model_dump(exclude_unset=True)
    for key in ("name", "description"):
        if key in update_data:
            value = (update_data[key] or "").strip()
            if not value:
                raise HTTPException(status_code=400, detail=f"The {key} cannot be empty")
            update_data[key] = value
    if "api_key" in update_data:
        raw = (update_data.pop("api_key") or "").strip()
        agent.api_key = encrypt_key(raw) if raw else None
    if "rate_limit" in update_data:
        rate_limit = update_data.pop("rate_limit")
        agent.rate_limit_requests = rate_limit["requests"] if rate_limit else None
        agent.rate_limit_window_seconds = rate_limit["window_seconds"] if rate_limit else None

    for key, value in update_data.items():
        if value is None and key in ("is_active", "temperature", "system_prompt", "avatar_url"):
            continue
        setattr(agent, key, value)

    agent = service.save_agent(agent)
    return {"success": True, "data": _agent_out(agent)}


@router.delete("/{agent_id}")
async def delete_agent(
    agent_id: int,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    agent = service.get_agent(agent_id, user.id)
    await service.delete_agent(agent)
    return {"success": True, "message": "Agent and its documents deleted"}


@router.get("/{agent_id}/usage")
async def list_agent_usage(
    agent_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    agent = service.get_agent(agent_id, user.id)
    logs = service.session.exec(
        select(ApiUsageLog)
        .where(ApiUsageLog.agent_id == agent.id)
        .order_by(col(ApiUsageLog.timestamp).desc())
        .limit(limit)
    ).all()
    return {"success": True, "count": len(logs), "data": logs}
