from fastapi.testclient import TestClient
from sqlmodel import Session

from agentdesk.models.document import AgentDocument
from agentdesk.services.vector_store import AgentVectorStore


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _add(client: TestClient, token: str, agent_id: int, title: str, content: str, **extra):
    return client.post(
        f"/api/agents/{agent_id}/documents",
        json={"title": title, "content": content, **extra},
        headers=_auth(token),
    )


def test_add_document(client: TestClient, session: Session, user_token: str, agent: dict):
    response = _add(
        client, user_token, agent["id"], "Refunds", "Refunds take five business days.",
        metadata={"source": "handbook.pdf"},
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["title"] == "Refunds"
    assert data["agent_id"] == agent["id"]
    assert data["metadata"] == {"source": "handbook.pdf"}
    assert "embedding" not in data

    # the embedding is cached on the row
    doc = session.get(AgentDocument, data["id"])
    assert doc.embedding is not None


def test_add_document_missing_fields(client: TestClient, user_token: str, agent: dict):
    response = _add(client, user_token, agent["id"], "  ", "")
    assert response.status_code == 400
    assert response.json()["error"] == "Title and content are required"


def test_add_document_to_other_users_agent(
    client: TestClient, admin_token: str, agent: dict
):
    response = _add(client, admin_token, agent["id"], "Sneaky", "Should not land")
    assert response.status_code == 404


def test_list_documents(client: TestClient, user_token: str, agent: dict):
    _add(client, user_token, agent["id"], "One", "First document")
    _add(client, user_token, agent["id"], "Two", "Second document")

    response = client.get(f"/api/agents/{agent['id']}/documents", headers=_auth(user_token))
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert {d["title"] for d in body["data"]} == {"One", "Two"}


def test_search_documents(client: TestClient, user_token: str, agent: dict):
    _add(client, user_token, agent["id"], "Refunds", "refund policy money back guarantee")
    _add(client, user_token, agent["id"], "Shipping", "shipping takes three days by courier")

    response = client.get(
        f"/api/agents/{agent['id']}/documents/search",
        params={"q": "refund money back", "limit": 1},
        headers=_auth(user_token),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    hit = body["data"][0]
    assert hit["metadata"]["title"] == "Refunds"
    assert hit["content"] == "refund policy money back guarantee"
    assert isinstance(hit["score"], float)


def test_search_documents_empty_query(client: TestClient, user_token: str, agent: dict):
    response = client.get(
        f"/api/agents/{agent['id']}/documents/search",
        params={"q": "  "},
        headers=_auth(user_token),
    )
    assert response.status_code == 400


def test_search_without_documents(client: TestClient, user_token: str, agent: dict):
    response = client.get(
        f"/api/agents/{agent['id']}/documents/search",
        params={"q": "anything"},
        headers=_auth(user_token),
    )
    assert response.status_code == 200
    assert response.json()["data"] == []


def test_delete_document_resyncs_index(
    client: TestClient, user_token: str, agent: dict, store: AgentVectorStore
):
    first = _add(client, user_token, agent["id"], "Keep", "keep this one").json()["data"]
    second = _add(client, user_token, agent["id"], "Drop", "drop this one").json()["data"]

    response = client.delete(
        f"/api/agents/{agent['id']}/documents/{second['id']}",
        headers=_auth(user_token),
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Document deleted"

    index = store._instances[f"agent_{agent['id']}"]
    assert index.size == 1
    assert index.docstore[0]["metadata"]["id"] == first["id"]


def test_delete_missing_document(client: TestClient, user_token: str, agent: dict):
    response = client.delete(
        f"/api/agents/{agent['id']}/documents/999", headers=_auth(user_token)
    )
    assert response.status_code == 404
    assert response.json()["error"] == "Document not found or does not belong to this agent"


def test_clear_documents(
    client: TestClient, user_token: str, agent: dict, store: AgentVectorStore
):
    _add(client, user_token, agent["id"], "One", "First document")
    _add(client, user_token, agent["id"], "Two", "Second document")

    response = client.delete(f"/api/agents/{agent['id']}/documents", headers=_auth(user_token))
    assert response.status_code == 200
    assert response.json()["documents_removed"] == 2

    response = client.get(f"/api/agents/{agent['id']}/documents", headers=_auth(user_token))
    assert response.json()["count"] == 0
    assert not (store.base_dir / f"agent_{agent['id']}").exists()
