"""
Agent Routes

Streaming endpoint for multi-step agent runs and the step-budget metadata
endpoint used by clients for display.
"""

import asyncio
import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response

from querypilot.agents.query_agent import stream_query_agent
from querypilot.api.sse import event_stream_response
from querypilot.config import get_settings
from querypilot.llm.factory import LLMProviderFactory
from querypilot.models.agent import AgentRunConfig
from querypilot.models.api import AgentMetadataResponse, AgentRunRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


@router.post("/agent", response_model=None)
async def run_agent(request: Request, run_request: AgentRunRequest) -> Response:
    """
    Start an agent run and stream its events as Server-Sent Events.

    Missing inputs are rejected with a 400 JSON body before streaming
    starts. Once streaming, failures arrive as ``error`` events followed
    by the final ``complete`` event and the ``[DONE]`` sentinel.
    """
    prompt = (run_request.prompt or "").strip()
    if not prompt:
        return _bad_request("Missing required field: prompt")

    settings = get_settings()
    try:
        provider = LLMProviderFactory.create_default_provider(settings.llm, run_request.api_key)
    except ValueError as e:
        logger.warning(f"Agent run rejected: {e}")
        return _bad_request("API key is required")

    if not (run_request.connection_string or "").strip():
        return _bad_request("Database connection is required")

    config = AgentRunConfig(
        connection_string=run_request.connection_string,
        schema_snapshot=tuple(run_request.schema_snapshot),
        previous_sql=run_request.previous_sql,
        previous_context=run_request.previous_context,
        max_steps=settings.agent.max_steps,
    )
    logger.info(
        f"Agent run requested: {prompt[:100]}",
        extra={
            "tables": len(config.schema_snapshot),
            "follow_up": bool(config.previous_sql),
        },
    )

    cancel_event = asyncio.Event()
    events = stream_query_agent(
        prompt,
        config,
        provider,
        cancel_event=cancel_event,
        settings=settings,
    )
    return event_stream_response(events, cancel_event, request)


@router.get("/agent", response_model=AgentMetadataResponse, response_model_by_alias=True)
async def agent_metadata() -> AgentMetadataResponse:
    """Return the step budget applied to every run."""
    return AgentMetadataResponse(max_steps=get_settings().agent.max_steps)
