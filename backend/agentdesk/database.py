import logging
from collections.abc import Generator

from sqlmodel import Session, SQLModel, create_engine

from agentdesk.config import settings

logger = logging.getLogger(__name__)

# request handlers run in a threadpool, so sqlite connections cross threads
_connect_args = (
    {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
)
engine = create_engine(settings.database_url, echo=False, connect_args=_connect_args)


def init_db() -> None:
    import agentdesk.models  # noqa: F401 (registers tables on SQLModel.metadata)

    SQLModel.metadata.create_all(engine)
    logger.info(f"Database ready at {engine.url.render_as_string(hide_password=True)}")


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
