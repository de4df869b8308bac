"""
QueryPilot Agents Module

Available Agents:
    - stream_query_agent / run_query_agent: multi-step tool-using query agent
    - SQLGeneratorAgent: single-shot generator used by chat mode
    - RepairController: bounded auto-repair loop for chat mode
    - BaseAgent: retrying base class for single-shot agents

Usage:
    from querypilot.agents import stream_query_agent

    async for event in stream_query_agent(goal, config, provider):
        ...
"""

from querypilot.agents.base import BaseAgent
from querypilot.agents.query_agent import (
    build_system_prompt,
    build_tool_specs,
    describe_provider_error,
    run_query_agent,
    stream_query_agent,
)
from querypilot.agents.repair import RepairController
from querypilot.agents.sql_generator import SQLGeneratorAgent

__all__ = [
    "BaseAgent",
    "RepairController",
    "SQLGeneratorAgent",
    "build_system_prompt",
    "build_tool_specs",
    "describe_provider_error",
    "run_query_agent",
    "stream_query_agent",
]
