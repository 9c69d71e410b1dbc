"""Public endpoint for calling an agent with one of its API tokens.

Every call, successful or not, leaves one ApiUsageLog row behind.
"""

import logging
import time
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from agentdesk.api.deps import get_agent_service
from agentdesk.auth import token_hint
from agentdesk.models.agent import Agent
from agentdesk.models.usage import ApiUsageLog
from agentdesk.services.agent_service import AgentService
from agentdesk.services.rag import RAGPipeline, get_rag_pipeline
from agentdesk.services.rate_limiter import SlidingWindowRateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["invoke"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


def _record_usage(session: Session, usage: ApiUsageLog) -> None:
    try:
        session.add(usage)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception(f"Failed to save API usage log (token hint: {usage.api_token_hint})")


@router.post("/invoke")
async def invoke_agent(
    request: Request,
    response: Response,
    service: AgentService = Depends(get_agent_service),
    pipeline: RAGPipeline = Depends(get_rag_pipeline),
    limiter: SlidingWindowRateLimiter | None = Depends(get_rate_limiter),
):
    started = time.monotonic()
    usage = ApiUsageLog(timestamp=datetime.utcnow(), ip_address=_client_ip(request))
    try:
        result = await _invoke(request, response, service, pipeline, limiter, usage)
        usage.success = True
        return result
    except HTTPException as exc:
        usage.error_message = str(exc.detail)
        raise
    except Exception as exc:
        logger.exception(f"Error invoking agent with token {usage.api_token_hint}")
        usage.error_message = str(exc) or "Internal server error"
        raise HTTPException(status_code=500, detail=usage.error_message)
    finally:
        usage.duration_ms = int((time.monotonic() - started) * 1000)
        _record_usage(service.session, usage)


async def _invoke(
    request: Request,
    response: Response,
    service: AgentService,
    pipeline: RAGPipeline,
    limiter: SlidingWindowRateLimiter | None,
    usage: ApiUsageLog,
) -> dict:
    scheme, _, raw_token = request.headers.get("Authorization", "").strip().partition(" ")
    if scheme != "Bearer":
        logger.warning(f"Invoke attempt without a Bearer token from {usage.ip_address}")
        raise HTTPException(
            status_code=401,
            detail="Authorization header missing or malformed (expected: Bearer <token>)",
        )
    raw_token = raw_token.strip()
    if not raw_token:
        raise HTTPException(status_code=401, detail="Token not found in Authorization header")
    usage.api_token_hint = token_hint(raw_token)

    token = service.find_active_token(raw_token)
    agent = service.session.get(Agent, token.agent_id) if token else None
    if not token or not agent:
        logger.warning(
            f"Invoke attempt with invalid or inactive token {usage.api_token_hint} "
            f"from {usage.ip_address}"
        )
        raise HTTPException(status_code=404, detail="Agent not found or token invalid/inactive")
    usage.agent_id = agent.id
    usage.token_id = token.id

    if not agent.is_active:
        raise HTTPException(status_code=403, detail="This agent is currently deactivated")

    try:
        body = await request.json()
    except ValueError:
        body = None
    message = body.get("message") if isinstance(body, dict) else None
    if isinstance(message, str):
        usage.input_length = len(message)

    if agent.has_rate_limit and limiter is not None:
        try:
            result = await limiter.limit(
                agent.id,
                token.token_hash,
                agent.rate_limit_requests,
                agent.rate_limit_window_seconds,
            )
        except RedisError as e:
            logger.warning(f"Rate limiter unavailable for agent {agent.id}, allowing request: {e}")
        else:
            if not result.success:
                logger.info(f"Rate limit exceeded for agent {agent.id} (token {usage.api_token_hint})")
                raise HTTPException(
                    status_code=429,
                    detail="Rate limit exceeded. Try again later.",
                    headers=result.headers(),
                )
            response.headers.update(result.headers())
            logger.debug(
                f"Rate limit OK for agent {agent.id}: {result.remaining}/{result.limit} left"
            )

    if not message or not isinstance(message, str):
        raise HTTPException(status_code=400, detail='Field "message" is invalid or missing')

    reply = await pipeline.agent_api_response(service.session, agent, message)
    usage.output_length = len(reply)

    try:
        token.last_used_at = datetime.utcnow()
        service.session.add(token)
        service.session.commit()
    except SQLAlchemyError:
        service.session.rollback()
        logger.exception(f"Failed to update last_used_at for token {token.id}")

    return {"success": True, "response": reply, "agent_id": agent.id}
