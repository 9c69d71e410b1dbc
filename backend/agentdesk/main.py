import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session, select
from starlette.exceptions import HTTPException as StarletteHTTPException

from agentdesk.api.agents import router as agents_router
from agentdesk.api.ask import router as ask_router
from agentdesk.api.auth import router as auth_router
from agentdesk.api.documents import router as documents_router
from agentdesk.api.invoke import router as invoke_router
from agentdesk.api.knowledge import router as knowledge_router
from agentdesk.api.tokens import router as tokens_router
from agentdesk.api.users import router as users_router
from agentdesk.auth import hash_password
from agentdesk.config import settings
from agentdesk.database import engine, init_db
from agentdesk.exceptions import (
    AgentDeskError,
    AgentNotFoundError,
    DocumentNotFoundError,
    DuplicateAgentError,
    TokenNotFoundError,
)
from agentdesk.models.user import User

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    with Session(engine) as session:
        admin = session.exec(select(User).where(User.username == "admin")).first()
        if not admin:
            admin = User(
                username="admin",
                password_hash=hash_password("admin"),
                role="admin",
            )
            session.add(admin)
            session.commit()
            logger.info("Seeded default admin user")
    yield


app = FastAPI(title="AgentDesk", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error envelopes ---

_STATUS_BY_ERROR = {
    AgentNotFoundError: 404,
    DocumentNotFoundError: 404,
    TokenNotFoundError: 404,
    DuplicateAgentError: 409,
}


def _error(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return _error(400, message)


@app.exception_handler(AgentDeskError)
async def agentdesk_error_handler(request: Request, exc: AgentDeskError):
    status_code = _STATUS_BY_ERROR.get(type(exc), 500)
    if status_code == 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return _error(status_code, str(exc))


app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(agents_router, prefix="/api")
app.include_router(documents_router, prefix="/api")
app.include_router(tokens_router, prefix="/api")
app.include_router(ask_router, prefix="/api")
app.include_router(knowledge_router, prefix="/api")
app.include_router(invoke_router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "ok"}
