from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from agentdesk.auth import decode_token
from agentdesk.database import get_session
from agentdesk.models.user import User
from agentdesk.services.agent_service import AgentService
from agentdesk.services.vector_store import AgentVectorStore, get_vector_store

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: Session = Depends(get_session),
) -> User:
    try:
        payload = decode_token(credentials.credentials)
        user_id = int(payload["sub"])
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = session.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def get_admin_user(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin required")
    return user


def get_agent_service(
    session: Session = Depends(get_session),
    store: AgentVectorStore = Depends(get_vector_store),
) -> AgentService:
    return AgentService(session, store)
