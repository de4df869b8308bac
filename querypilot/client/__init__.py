"""
Client Module

Consumes agent event streams and rebuilds progress for display.

Components:
    - FrameBuffer: incremental SSE frame decoding
    - AgentReducer: folds events into AgentProgress and a transcript
    - build_continuation_context: digest of a step-limited run
    - AgentSession: cancellable run driver over HTTP
"""

from querypilot.client.continuation import build_continuation_context, continuation_goal
from querypilot.client.frames import FrameBuffer
from querypilot.client.models import AgentProgress, AgentTodoItem, ToolCallInfo, TranscriptEntry
from querypilot.client.reducer import AgentReducer
from querypilot.client.session import AgentSession, AgentSessionError

__all__ = [
    "AgentProgress",
    "AgentReducer",
    "AgentSession",
    "AgentSessionError",
    "AgentTodoItem",
    "FrameBuffer",
    "ToolCallInfo",
    "TranscriptEntry",
    "build_continuation_context",
    "continuation_goal",
]
