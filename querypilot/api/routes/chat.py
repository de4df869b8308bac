"""
Chat Routes

Chat mode: one user message, one single-shot generation, then direct
execution with bounded auto-repair. The whole turn runs in-process and the
resulting transcript is returned in one JSON response.
"""

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from querypilot.agents.repair import RepairController
from querypilot.agents.sql_generator import SQLGeneratorAgent
from querypilot.config import get_settings
from querypilot.llm.factory import LLMProviderFactory
from querypilot.models.agent import Message
from querypilot.models.api import ChatTurnRequest, ChatTurnResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatTurnResponse, response_model_by_alias=True)
async def chat_turn(chat_request: ChatTurnRequest) -> ChatTurnResponse | JSONResponse:
    """
    Run one chat-mode turn.

    Args:
        chat_request: Prompt, schema snapshot, current SQL and prior messages

    Returns:
        ChatTurnResponse with the repair report (outcome, final SQL, result
        preview and the transcript entries produced along the way)
    """
    settings = get_settings()
    try:
        provider = LLMProviderFactory.create_default_provider(settings.llm, chat_request.api_key)
    except ValueError as e:
        logger.warning(f"Chat turn rejected: {e}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "API key is required"},
        )

    controller = RepairController(
        SQLGeneratorAgent(llm_provider=provider, max_tokens=settings.llm.max_tokens),
        connection_string=chat_request.connection_string,
        settings=settings.repair,
        database=settings.database,
    )
    history = [
        Message(role=message.role, content=message.content)
        for message in chat_request.conversation_history
    ]
    report = await controller.run_turn(
        chat_request.prompt,
        schema=chat_request.schema_snapshot,
        current_sql=chat_request.current_sql,
        history=history,
    )
    return ChatTurnResponse(report=report)
