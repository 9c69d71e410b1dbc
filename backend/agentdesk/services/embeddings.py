"""Text embedding backends used by the vector store."""

from typing import Protocol

from agentdesk.config import settings
from agentdesk.services.openai_client import get_openai_client


class Embedder(Protocol):
    async def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    async def embed_query(self, text: str) -> list[float]: ...


class OpenAIEmbedder:
    """Embeds text with the OpenAI embeddings endpoint."""

    def __init__(self, model: str | None = None, batch_size: int = 512):
        self.model = model or settings.embedding_model
        self.batch_size = batch_size

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        client = get_openai_client()
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = [t.replace("\n", " ") for t in texts[start : start + self.batch_size]]
            response = await client.embeddings.create(model=self.model, input=batch)
            vectors.extend(item.embedding for item in response.data)
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        [vector] = await self.embed_documents([text])
        return vector
