"""Process-wide OpenAI clients, created lazily and cached per API key."""

from openai import AsyncOpenAI

from agentdesk.config import settings

_clients: dict[str, AsyncOpenAI] = {}


def get_openai_client(api_key: str | None = None) -> AsyncOpenAI:
    """Return an AsyncOpenAI client for ``api_key`` or the configured key.

    Raises:
        ValueError: if no key is given and none is configured.
    """
    key = api_key or settings.openai_api_key
    if not key:
        raise ValueError("OpenAI API key is not configured")
    client = _clients.get(key)
    if client is None:
        client = AsyncOpenAI(api_key=key)
        _clients[key] = client
    return client


async def chat_completion(
    messages: list[dict[str, str]],
    model: str,
    temperature: float,
    max_tokens: int | None = None,
    api_key: str | None = None,
) -> str:
    """Send a chat completion request and return the assistant text."""
    client = get_openai_client(api_key)
    kwargs = {"model": model, "messages": messages, "temperature": temperature}
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    response = await client.chat.completions.create(**kwargs)
    return response.choices[0].message.content or ""
