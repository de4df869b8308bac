"""
SQLGeneratorAgent

Single-shot SQL generation for chat mode. One completion per call, no
tools: the model gets the schema, the current query and what happened when
it last ran, and answers with a JSON object.

Modes:
    generate: initial or corrective generation
    debug: investigate an empty result, optionally asking for diagnostic queries
    validate: check the rows of a successful run and propose a fix for bad data

The reply is cleaned before it is returned: code fences are stripped,
unparseable replies are treated as raw SQL, mutation statements are replaced
by the current query, and implausible SQL is flagged so the repair loop can
ask again.
"""

import json
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from querypilot.agents.base import BaseAgent
from querypilot.llm.base import BaseLLMProvider
from querypilot.llm.models import LLMMessage, LLMRequest
from querypilot.models.agent import (
    GeneratedQuery,
    QueryResultInfo,
    SQLGeneratorInput,
    SQLGeneratorOutput,
)
from querypilot.models.errors import LLMError
from querypilot.models.schema import SchemaInfo, TableSample
from querypilot.prompts.loader import PromptLoader
from querypilot.utils.sql_guard import format_sql, is_mutation_query, looks_like_sql, strip_code_fences

logger = logging.getLogger(__name__)

GENERATE_PROMPT = "agents/sql_generate.md"
DEBUG_PROMPT = "agents/sql_debug.md"
VALIDATE_PROMPT = "agents/sql_validate.md"

MUTATION_BLOCKED = (
    "I can only generate read-only SELECT queries for safety. "
    "Mutation queries (INSERT, UPDATE, DELETE, DROP, etc.) are not allowed."
)
DEFAULT_CLARIFYING_QUESTIONS = [
    "What specific data or table are you trying to query?",
    "What columns or fields would you like to see?",
    "Are there any specific filters or conditions you want to apply?",
]


def format_schema_for_prompt(schema: Sequence[SchemaInfo]) -> str:
    """Render the schema snapshot as the plain-text block the model reads."""
    if not schema:
        return "No schema information available."

    lines = ["Database Schema (PostgreSQL):", ""]
    for table in schema:
        lines.append(f"{'VIEW' if table.type == 'view' else 'TABLE'}: {table.qualified_name}")
        for column in table.columns:
            pk = " (PRIMARY KEY)" if column.is_primary_key else ""
            lines.append(f'  - "{column.name}": {column.type}{pk}')
        lines.append("")
    return "\n".join(lines)


def format_query_result_for_prompt(result: QueryResultInfo | None) -> str:
    if result is None:
        return ""

    lines = ["Query Execution Result:", ""]
    if result.error:
        lines.append(f"ERROR: {result.error}")
        return "\n".join(lines)

    lines.append(f"Rows returned: {result.row_count}")
    lines.append(f"Execution time: {result.execution_time}ms")
    if result.empty_columns:
        lines.append(
            f"WARNING: These columns returned all NULL/empty values: {', '.join(result.empty_columns)}"
        )
    if result.sample_rows:
        lines.append("Sample of returned data:")
        lines.extend(f"  {json.dumps(row, default=str)}" for row in result.sample_rows[:3])
    return "\n".join(lines)


def format_sample_data_for_prompt(samples: Sequence[TableSample]) -> str:
    """Render sampled rows, JSON column examples first, two rows per table."""
    if not samples:
        return ""

    lines = ["Sample Data (for understanding field values and JSON structure):", ""]
    for sample in samples:
        lines.append(f"Table: {sample.table}")
        if sample.json_field_samples:
            lines.append("  JSON Field Structures:")
            for field, values in sample.json_field_samples.items():
                lines.append(f'    "{field}" examples:')
                for value in values:
                    rendered = json.dumps(value, indent=2, default=str)
                    lines.append("      " + rendered.replace("\n", "\n      "))
        if sample.rows:
            lines.append("  Sample rows:")
            for row in sample.rows[:2]:
                cells = ", ".join(
                    f'"{key}": {json.dumps(value, default=str)}' for key, value in row.items()
                )
                lines.append(f"    {{ {cells} }}")
        lines.append("")
    return "\n".join(lines).rstrip()


def parse_model_reply(text: str, is_follow_up: bool) -> dict[str, Any]:
    """Parse the JSON reply, falling back to treating the whole text as SQL."""
    cleaned = strip_code_fences(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        payload = None
    if not isinstance(payload, dict):
        return {
            "sql": cleaned,
            "explanation": (
                "Query updated based on your request."
                if is_follow_up
                else "Query generated based on your request."
            ),
        }
    return payload


class SQLGeneratorAgent(BaseAgent):
    """
    Chat-mode SQL generator.

    Usage:
        agent = SQLGeneratorAgent(llm_provider=provider)
        output = await agent(SQLGeneratorInput(query="Orders per day", schema_snapshot=tables))
        print(output.result.sql)
    """

    def __init__(
        self,
        llm_provider: BaseLLMProvider,
        prompts: PromptLoader | None = None,
        max_tokens: int = 2048,
        max_retries: int = 2,
    ):
        super().__init__(name="SQLGeneratorAgent", max_retries=max_retries)
        self.llm = llm_provider
        self.prompts = prompts or PromptLoader()
        self.max_tokens = max_tokens

    async def execute(self, input: SQLGeneratorInput) -> SQLGeneratorOutput:
        is_follow_up = bool(input.conversation_history)
        request = LLMRequest(
            messages=[
                LLMMessage(role="system", content=self._system_prompt(input, is_follow_up)),
                *self._history_messages(input),
                LLMMessage(role="user", content=self._build_user_message(input, is_follow_up)),
            ],
            temperature=0.0,
            max_tokens=self.max_tokens,
        )

        try:
            response = await self.llm.generate(request)
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(
                agent=self.name,
                message=f"LLM generation failed: {e}",
                context={"mode": input.mode},
            ) from e

        self._track_llm_call(tokens=response.usage.total_tokens)
        output = self._build_output(response.content, input, is_follow_up)
        logger.debug(
            f"Generated SQL ({input.mode}): {output.result.sql[:200]}",
            extra={
                "status": output.status,
                "mode": input.mode,
            },
        )
        return output

    def _system_prompt(self, input: SQLGeneratorInput, is_follow_up: bool) -> str:
        if input.mode == "debug":
            return self.prompts.render(DEBUG_PROMPT)
        if input.mode == "validate":
            return self.prompts.render(VALIDATE_PROMPT)
        return self.prompts.render(
            GENERATE_PROMPT,
            is_follow_up=is_follow_up,
            is_debug=input.is_debug,
            require_sql=input.require_sql,
        )

    def _history_messages(self, input: SQLGeneratorInput) -> list[LLMMessage]:
        return [
            LLMMessage(role=message.role, content=message.content)
            for message in input.conversation_history
            if message.role in ("user", "assistant") and message.content.strip()
        ]

    def _build_user_message(self, input: SQLGeneratorInput, is_follow_up: bool) -> str:
        sections: list[str] = []
        if not is_follow_up:
            sections.append(format_schema_for_prompt(input.schema_snapshot))
        if input.sample_data and (not is_follow_up or input.mode == "debug"):
            sections.append(format_sample_data_for_prompt(input.sample_data))
        if input.current_sql and (is_follow_up or input.mode != "generate"):
            sections.append(f"Current SQL query:\n```sql\n{input.current_sql}\n```")
        result_context = format_query_result_for_prompt(input.query_result)
        if result_context:
            sections.append(result_context)
        if input.diagnostic_context:
            sections.append(f"Diagnostic query results:\n{input.diagnostic_context}")
        sections.append(f"User request: {input.query.strip()}")
        return "\n\n".join(sections)

    def _build_output(
        self, content: str, input: SQLGeneratorInput, is_follow_up: bool
    ) -> SQLGeneratorOutput:
        payload = parse_model_reply(content, is_follow_up)
        sql = strip_code_fences(str(payload.get("sql") or ""))
        fallback_sql = input.current_sql or ""

        if is_mutation_query(sql):
            logger.warning("Model proposed a mutation query; keeping the current SQL")
            return SQLGeneratorOutput(
                success=True,
                result=GeneratedQuery(sql=fallback_sql, explanation=MUTATION_BLOCKED),
                status="mutation",
                invalid_reason="Mutation queries are not allowed",
                metadata=self._metadata,
            )

        try:
            parsed = GeneratedQuery.model_validate({**payload, "sql": sql})
        except ValidationError:
            parsed = GeneratedQuery(sql=sql, explanation=str(payload.get("explanation") or ""))

        check = looks_like_sql(sql)
        if check.valid:
            parsed.sql = format_sql(sql)

        if parsed.needs_clarification and parsed.clarifying_questions:
            return SQLGeneratorOutput(
                success=True,
                result=parsed,
                status="clarification",
                invalid_reason=check.reason,
                metadata=self._metadata,
            )
        if check.valid:
            return SQLGeneratorOutput(success=True, result=parsed, metadata=self._metadata)

        return SQLGeneratorOutput(
            success=True,
            result=GeneratedQuery(
                sql=fallback_sql,
                explanation=(
                    "I couldn't generate a valid SQL query. "
                    f"{check.reason or 'Please provide more details about what data you want to query.'}"
                ),
                needs_clarification=True,
                clarifying_questions=list(DEFAULT_CLARIFYING_QUESTIONS),
                validation=parsed.validation,
            ),
            status="invalid",
            invalid_reason=check.reason,
            metadata=self._metadata,
        )
