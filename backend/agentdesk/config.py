from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///agentdesk.db"
    secret_key: str = "change-me-in-production"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    encryption_key: str = "change-me-in-production"
    log_level: str = "INFO"

    openai_api_key: str = ""
    embedding_model: str = "text-embedding-ada-002"
    chat_model: str = "gpt-4o"
    ask_model: str = "gpt-4o-mini"
    vector_store_dir: str = "vector-store"

    redis_url: str | None = None

    class Config:
        env_prefix = "AGENTDESK_"


settings = Settings()
