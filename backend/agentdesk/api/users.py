from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from agentdesk.api.deps import get_admin_user, get_agent_service
from agentdesk.auth import hash_password
from agentdesk.database import get_session
from agentdesk.models.agent import Agent
from agentdesk.models.user import User
from agentdesk.services.agent_service import AgentService

router = APIRouter(prefix="/users", tags=["users"])


class CreateUserRequest(BaseModel):
    username: str
    password: str
    role: str | None = None


class UpdateUserRequest(BaseModel):
    role: str | None = None
    is_active: bool | None = None


class UserResponse(BaseModel):
    id: int
    username: str
    role: str
    is_active: bool
    created_at: datetime
    last_login_at: datetime | None


ROLES = {"admin", "user"}


def _user_out(user: User) -> UserResponse:
    return UserResponse.model_validate(user, from_attributes=True)


@router.get("")
async def list_users(
    session: Session = Depends(get_session),
    _admin: User = Depends(get_admin_user),
):
    users = session.exec(select(User)).all()
    return {"success": True, "data": [_user_out(u) for u in users]}


@router.post("", status_code=201)
async def create_user(
    body: CreateUserRequest,
    session: Session = Depends(get_session),
    _admin: User = Depends(get_admin_user),
):
    if body.role and body.role not in ROLES:
        raise HTTPException(status_code=400, detail="Role must be 'admin' or 'user'")
    existing = session.exec(
        select(User).where(User.username == body.username)
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="Username already exists")

    user = User(
        username=body.username,
        password_hash=hash_password(body.password),
        **({"role": body.role} if body.role else {}),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return {"success": True, "data": _user_out(user)}


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    body: UpdateUserRequest,
    session: Session = Depends(get_session),
    admin: User = Depends(get_admin_user),
):
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if body.role is not None and body.role not in ROLES:
        raise HTTPException(status_code=400, detail="Role must be 'admin' or 'user'")
    if user.id == admin.id and body.is_active is False:
        raise HTTPException(status_code=400, detail="You cannot deactivate yourself")

    for key, value in body.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(user, key, value)
    session.add(user)
    session.commit()
    session.refresh(user)
    return {"success": True, "data": _user_out(user)}


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    service: AgentService = Depends(get_agent_service),
    admin: User = Depends(get_admin_user),
):
    session = service.session
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete yourself")

    # Agents go with their owner, including documents, tokens and indexes
    for agent in session.exec(select(Agent).where(Agent.user_id == user.id)).all():
        await service.delete_agent(agent)

    session.delete(user)
    session.commit()
    return {"success": True, "message": "User deleted"}
