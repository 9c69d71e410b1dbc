"""Per-agent FAISS similarity index persisted to local disk.

The database is the system of record: an index is a cache over the
``AgentDocument`` rows of one agent (or of the shared knowledge base) and can
always be rebuilt with :meth:`AgentVectorStore.sync_from_database`.

Each namespace lives in ``<vector_store_dir>/<namespace>/`` as a FAISS flat L2
index (``index.faiss``) plus a JSON docstore whose entries line up with the
index positions.
"""

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import faiss
import numpy as np
from sqlmodel import Session, col, func, select

from agentdesk.config import settings
from agentdesk.models.document import AgentDocument
from agentdesk.services.embeddings import Embedder, OpenAIEmbedder

logger = logging.getLogger(__name__)

INDEX_FILE = "index.faiss"
DOCSTORE_FILE = "docstore.json"
SHARED_NAMESPACE = "shared"


@dataclass
class VectorDocument:
    page_content: str
    metadata: dict = field(default_factory=dict)
    embedding: list[float] | None = None
    score: float | None = None


@dataclass
class AgentIndex:
    index: faiss.Index | None = None
    docstore: list[dict] = field(default_factory=list)

    @property
    def size(self) -> int:
        return self.index.ntotal if self.index is not None else 0

    def search(self, vector: list[float], k: int) -> list[VectorDocument]:
        if self.size == 0 or k <= 0:
            return []
        query = np.asarray([vector], dtype="float32")
        distances, positions = self.index.search(query, min(k, self.size))
        results = []
        for distance, position in zip(distances[0], positions[0]):
            if position < 0:
                continue
            entry = self.docstore[position]
            results.append(
                VectorDocument(
                    page_content=entry["page_content"],
                    metadata=dict(entry["metadata"]),
                    score=float(distance),
                )
            )
        return results


def namespace_for(agent_id: int | str | None) -> str:
    if agent_id is None:
        return SHARED_NAMESPACE
    if isinstance(agent_id, str) and not agent_id.strip():
        raise ValueError("Agent id is required")
    return f"agent_{agent_id}"


def _owner_clause(agent_id: int | None):
    if agent_id is None:
        return col(AgentDocument.agent_id).is_(None)
    return col(AgentDocument.agent_id) == agent_id


def to_vector_document(doc: AgentDocument) -> VectorDocument:
    return VectorDocument(
        page_content=doc.content,
        metadata={**(doc.metadata_ or {}), "id": doc.id, "title": doc.title or "Untitled"},
        embedding=doc.embedding,
    )


class AgentVectorStore:
    """Keeps one FAISS index per agent in memory and on disk."""

    def __init__(self, base_dir: str | Path | None = None, embedder: Embedder | None = None):
        self._base_dir = Path(base_dir) if base_dir else None
        self.embedder = embedder or OpenAIEmbedder()
        self._instances: dict[str, AgentIndex] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def base_dir(self) -> Path:
        return self._base_dir or Path(settings.vector_store_dir)

    def _lock(self, namespace: str) -> asyncio.Lock:
        lock = self._locks.get(namespace)
        if lock is None:
            lock = self._locks[namespace] = asyncio.Lock()
        return lock

    # --- persistence ---

    def _load_from_disk(self, namespace: str) -> AgentIndex | None:
        directory = self.base_dir / namespace
        index_path = directory / INDEX_FILE
        docstore_path = directory / DOCSTORE_FILE
        if not index_path.exists() or not docstore_path.exists():
            return None
        try:
            index = faiss.read_index(str(index_path))
            docstore = json.loads(docstore_path.read_text(encoding="utf-8"))
        except (OSError, RuntimeError, ValueError):
            logger.exception(f"Failed to load vector index {namespace} from disk")
            return None
        if len(docstore) != index.ntotal:
            logger.warning(
                f"Vector index {namespace} is inconsistent "
                f"({index.ntotal} vectors, {len(docstore)} entries); discarding"
            )
            return None
        return AgentIndex(index=index, docstore=docstore)

    def _save_to_disk(self, namespace: str, store: AgentIndex) -> None:
        directory = self.base_dir / namespace
        directory.mkdir(parents=True, exist_ok=True)
        faiss.write_index(store.index, str(directory / INDEX_FILE))
        (directory / DOCSTORE_FILE).write_text(
            json.dumps(store.docstore, ensure_ascii=False), encoding="utf-8"
        )

    # --- unlocked helpers ---

    def _get(self, namespace: str) -> AgentIndex:
        store = self._instances.get(namespace)
        if store is not None:
            return store
        store = self._load_from_disk(namespace)
        if store is None:
            logger.info(f"Creating new vector index {namespace}")
            store = AgentIndex()
        self._instances[namespace] = store
        return store

    async def _add(self, namespace: str, documents: list[VectorDocument]) -> list[list[float]]:
        missing = [doc for doc in documents if doc.embedding is None]
        if missing:
            vectors = await self.embedder.embed_documents([doc.page_content for doc in missing])
            for doc, vector in zip(missing, vectors):
                doc.embedding = vector

        matrix = np.asarray([doc.embedding for doc in documents], dtype="float32")
        store = self._get(namespace)
        if store.index is None:
            store.index = faiss.IndexFlatL2(matrix.shape[1])
        elif store.index.d != matrix.shape[1]:
            raise ValueError(
                f"Embedding dimension {matrix.shape[1]} does not match "
                f"index dimension {store.index.d}"
            )
        store.index.add(matrix)
        store.docstore.extend(
            {"page_content": doc.page_content, "metadata": doc.metadata} for doc in documents
        )
        self._save_to_disk(namespace, store)
        return [doc.embedding for doc in documents]

    def _clear(self, namespace: str) -> None:
        self._instances.pop(namespace, None)
        directory = self.base_dir / namespace
        if directory.exists():
            shutil.rmtree(directory)

    async def _rebuild(self, session: Session, agent_id: int | None, namespace: str) -> AgentIndex:
        self._clear(namespace)
        rows = session.exec(
            select(AgentDocument)
            .where(_owner_clause(agent_id))
            .order_by(AgentDocument.created_at)
        ).all()
        if not rows:
            return self._get(namespace)

        documents = [to_vector_document(row) for row in rows]
        embeddings = await self._add(namespace, documents)
        # cache freshly computed embeddings on the rows
        dirty = False
        for row, vector in zip(rows, embeddings):
            if row.embedding is None:
                row.embedding = vector
                session.add(row)
                dirty = True
        if dirty:
            session.commit()
        return self._get(namespace)

    # --- public API ---

    async def get_instance(self, agent_id: int | str | None) -> AgentIndex:
        namespace = namespace_for(agent_id)
        async with self._lock(namespace):
            return self._get(namespace)

    async def add_documents(
        self, agent_id: int | str | None, documents: list[VectorDocument]
    ) -> list[list[float]]:
        """Embed (where needed), index and persist ``documents``.

        Returns the embeddings in input order so callers can cache them.
        """
        namespace = namespace_for(agent_id)
        if not documents:
            return []
        logger.info(f"Adding {len(documents)} documents to vector index {namespace}")
        async with self._lock(namespace):
            return await self._add(namespace, documents)

    def count_documents(self, session: Session, agent_id: int | None) -> int:
        return session.exec(
            select(func.count()).select_from(AgentDocument).where(_owner_clause(agent_id))
        ).one()

    async def similarity_search(
        self,
        session: Session,
        agent_id: int | None,
        query: str,
        k: int = 10,
    ) -> list[VectorDocument]:
        """Return up to ``k`` documents nearest to ``query``.

        Rebuilds the index from the database when it is out of step with the
        stored documents. Errors are logged and yield an empty result.
        """
        try:
            namespace = namespace_for(agent_id)
            total = self.count_documents(session, agent_id)
            if total == 0:
                logger.info(f"No documents available for vector index {namespace}")
                return []

            async with self._lock(namespace):
                store = self._get(namespace)
                if store.size != total:
                    logger.info(
                        f"Vector index {namespace} holds {store.size} of {total} "
                        "documents; rebuilding from the database"
                    )
                    store = await self._rebuild(session, agent_id, namespace)
                query_vector = await self.embedder.embed_query(query)
                results = store.search(query_vector, k)

            logger.info(f"Found {len(results)} similar documents in {namespace}")
            for i, doc in enumerate(results, start=1):
                logger.debug(
                    f"Document {i}: id={doc.metadata.get('id')} "
                    f"start={doc.page_content[:50]!r}"
                )
            return results
        except Exception:
            logger.exception(f"Similarity search failed for agent {agent_id}")
            return []

    async def clear(self, agent_id: int | str | None) -> None:
        namespace = namespace_for(agent_id)
        async with self._lock(namespace):
            self._clear(namespace)
        logger.info(f"Cleared vector index {namespace}")

    async def sync_from_database(self, session: Session, agent_id: int | None) -> int:
        """Rebuild the index from the database. Returns the indexed document count."""
        namespace = namespace_for(agent_id)
        try:
            async with self._lock(namespace):
                store = await self._rebuild(session, agent_id, namespace)
        except Exception:
            logger.exception(f"Failed to sync vector index {namespace} from the database")
            raise
        logger.info(f"Synced vector index {namespace} with {store.size} documents")
        return store.size


vector_store = AgentVectorStore()


def get_vector_store() -> AgentVectorStore:
    return vector_store
