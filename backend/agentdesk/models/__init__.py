from agentdesk.models.agent import Agent, ApiToken
from agentdesk.models.document import AgentDocument
from agentdesk.models.usage import ApiUsageLog
from agentdesk.models.user import User

__all__ = [
    "Agent",
    "AgentDocument",
    "ApiToken",
    "ApiUsageLog",
    "User",
]
