"""Domain errors raised by services and mapped to HTTP responses in main."""


class AgentDeskError(Exception):
    """Base class for errors raised by agentdesk services."""


class AgentNotFoundError(AgentDeskError):
    def __init__(self, agent_id: int | None = None):
        self.agent_id = agent_id
        super().__init__("Agent not found")


class DuplicateAgentError(AgentDeskError):
    def __init__(self, name: str):
        self.name = name
        super().__init__("An agent with this name already exists")


class DocumentNotFoundError(AgentDeskError):
    def __init__(self, document_id: int):
        self.document_id = document_id
        super().__init__("Document not found or does not belong to this agent")


class TokenNotFoundError(AgentDeskError):
    def __init__(self, token_id: int):
        self.token_id = token_id
        super().__init__("Token not found for this agent")


class RAGError(AgentDeskError):
    """An upstream embedding or chat-completion call failed."""
