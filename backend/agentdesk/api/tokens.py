"""API token management for agents. Secrets are only shown once, on creation."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from agentdesk.api.deps import get_agent_service, get_current_user
from agentdesk.models.agent import ApiToken
from agentdesk.models.user import User
from agentdesk.services.agent_service import AgentService

router = APIRouter(prefix="/agents/{agent_id}/tokens", tags=["tokens"])


class CreateTokenRequest(BaseModel):
    label: str | None = Field(default=None, max_length=100)


class UpdateTokenRequest(BaseModel):
    label: str | None = Field(default=None, max_length=100)
    is_active: bool | None = None


class TokenResponse(BaseModel):
    id: int
    label: str
    is_active: bool
    created_at: datetime
    last_used_at: datetime | None
    revoked_at: datetime | None


class CreatedTokenResponse(TokenResponse):
    token: str


def _token_out(token: ApiToken) -> TokenResponse:
    return TokenResponse(
        id=token.id,
        label=token.label,
        is_active=token.is_active,
        created_at=token.created_at,
        last_used_at=token.last_used_at,
        revoked_at=token.revoked_at,
    )


@router.get("")
async def list_tokens(
    agent_id: int,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    agent = service.get_agent(agent_id, user.id)
    return {"success": True, "data": [_token_out(t) for t in service.list_tokens(agent.id)]}


@router.post("", status_code=201)
async def create_token(
    agent_id: int,
    body: CreateTokenRequest,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    label = (body.label or "").strip()
    if not label:
        raise HTTPException(status_code=400, detail="A label is required for the token")

    agent = service.get_agent(agent_id, user.id)
    token, raw = service.create_token(agent, label)
    return {
        "success": True,
        "message": "Token generated. Copy it now, it will not be shown again.",
        "data": CreatedTokenResponse(**_token_out(token).model_dump(), token=raw),
    }


@router.put("/{token_id}")
async def update_token(
    agent_id: int,
    token_id: int,
    body: UpdateTokenRequest,
    service: AgentService = Depends(get_agent_service),
    user: User = Depends(get_current_user),
):
    label = None
    if body.label is not None:
        label = body.label.strip()
        if not label:
            raise HTTPException(status_code=400, detail="If provided, the label must be a non-empty string")
    if label is None and body.is_active is None:
        raise HTTPException(
            status_code=400,
            detail="No valid field (label or is_active) provided for update",
        )

    agent = service.get_agent(agent_id, user.id)
    token, revoked = service.update_token(agent.id, token_id, label=label, is_active=body.is_active)
    return {
        "success": True,
        "message": "Token revoked" if revoked else "Token updated",
        "data": _token_out(token),
    }
