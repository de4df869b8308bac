"""
Bounded Auto-Repair Controller

Chat-mode turn runner. One user message produces one generation; the SQL it
returns is executed directly (not through the agent tools) and, when it
fails, returns no rows or is not SQL at all, the controller asks the
generator for a correction. Corrections share one attempt counter per user
turn, capped by ``RepairSettings.max_attempts``.

The loop is a LangGraph state machine:

    generate ─┬─> execute ─┬─> validate ─> END (success)
              │            ├─> repair_error ──┐
              │            ├─> repair_empty ──┤ (back to the generation router)
              │            └─> limit ─> END   │
              ├─> repair_invalid ─────────────┘
              ├─> clarify ─> END
              └─> fallback ─> END

Flavors:
    error: resend the failing SQL and the database error
    empty: ask the debugger; run up to three diagnostic queries it suggests
        and feed their row counts into one more corrective generation
    invalid: demand SQL or a structured clarification once, then fall back
        to the last good query (or a structured error when there is none)

After a successful execution the generator checks the rows (validate mode).
When it reports issues together with a different query, that query runs
once; it only replaces the working one if it returns rows. Tables with JSON
columns are sampled at the start of the turn and the samples go into the
first generation and every empty-result investigation.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, Literal, TypedDict

from langgraph.graph import END, StateGraph

from querypilot.agents.query_agent import describe_provider_error
from querypilot.agents.sql_generator import DEFAULT_CLARIFYING_QUESTIONS, SQLGeneratorAgent
from querypilot.config import DatabaseSettings, RepairSettings
from querypilot.connectors.base import ConnectorError
from querypilot.connectors.readonly import ReadOnlyResult, run_read_only_query
from querypilot.connectors.sampling import fetch_json_samples
from querypilot.models.agent import (
    Message,
    QueryResultInfo,
    RepairEntry,
    RepairReport,
    SQLGeneratorInput,
    SQLGeneratorOutput,
    ValidationInfo,
)
from querypilot.models.errors import AgentError
from querypilot.models.schema import SchemaInfo, TableSample

logger = logging.getLogger(__name__)

QueryRunner = Callable[[str], Awaitable[ReadOnlyResult]]
SampleFetcher = Callable[[list[SchemaInfo]], Awaitable[list[TableSample]]]

ERROR_REPAIR_PROMPT = 'The query failed with this error: "{error}". Please fix the SQL query.'
EMPTY_REPAIR_PROMPT = (
    "The query returned no rows. Please analyze and fix the query. "
    "Check JOIN conditions, WHERE clauses, and JSON field access."
)
DIAGNOSTIC_REPAIR_PROMPT = (
    "The diagnostic queries above show what data exists. "
    "Use them to fix the query so it returns rows."
)
INVALID_REPAIR_PROMPT = (
    "Your previous reply was not a valid SQL query ({reason}). "
    "Reply with a valid SELECT query for my original request: {prompt}"
)
RESULT_CHECK_PROMPT = "Validate these query results and fix any issues found (like empty columns)."

ERROR_LIMIT_MESSAGE = "Auto-fix limit reached. Please review the error and try a different approach."
EMPTY_LIMIT_MESSAGE = (
    "Auto-debug limit reached. The query may need manual adjustment based on your data."
)


def find_empty_columns(columns: list[str], rows: list[dict[str, Any]]) -> list[str]:
    """Columns that are NULL in every row; empty when there are no rows."""
    if not rows:
        return []
    return [column for column in columns if all(row.get(column) is None for row in rows)]


class RepairState(TypedDict, total=False):
    """State carried through the repair graph for one user turn."""

    # Input
    prompt: str
    history: list[Message]
    schema: list[SchemaInfo]
    samples: list[TableSample]
    last_good_sql: str | None

    # Latest generation
    sql: str | None
    explanation: str | None
    status: str
    invalid_reason: str | None
    clarifying_questions: list[str]

    # Latest execution
    failure: Literal["error", "empty"] | None
    error: str | None
    row_count: int | None
    execution_time: int
    columns: list[str]
    rows: list[dict[str, Any]]
    validation: ValidationInfo | None

    # Loop bookkeeping
    attempts: int
    invalid_retries: int
    outcome: str | None
    entries: list[RepairEntry]


class RepairController:
    """
    Runs chat-mode turns with bounded self-repair.

    The attempt counter belongs to the user turn: ``run_turn`` calls
    ``start_turn`` before anything else, and a successful turn leaves the
    counter at zero for the next one.

    Usage:
        controller = RepairController(generator, connection_string=dsn)
        report = await controller.run_turn("Orders per customer", schema=tables)
    """

    def __init__(
        self,
        generator: SQLGeneratorAgent,
        connection_string: str | None = None,
        settings: RepairSettings | None = None,
        database: DatabaseSettings | None = None,
        query_runner: QueryRunner | None = None,
        sample_fetcher: SampleFetcher | None = None,
    ):
        self.generator = generator
        self.settings = settings or RepairSettings()
        if query_runner is None:
            if not connection_string:
                raise ValueError("connection_string is required when no query_runner is given")
            query_runner = partial(
                run_read_only_query,
                connection_string,
                settings=database,
                row_limit=self.settings.query_row_limit,
            )
        if sample_fetcher is None and connection_string and self.settings.sample_tables:
            sample_fetcher = partial(
                fetch_json_samples,
                connection_string,
                max_tables=self.settings.sample_tables,
                sample_size=self.settings.sample_size,
                settings=database,
            )
        self.run_query = query_runner
        self.fetch_samples = sample_fetcher
        self.attempts = 0
        self.graph = self._build_graph()

    def start_turn(self) -> None:
        """Reset the attempt counter for a new user message."""
        self.attempts = 0

    async def run_turn(
        self,
        prompt: str,
        schema: list[SchemaInfo] | None = None,
        current_sql: str | None = None,
        history: list[Message] | None = None,
    ) -> RepairReport:
        """
        Generate, execute and repair SQL for one user message.

        Raises:
            AgentError: If the first generation fails (later failures are
                reported in the returned report instead)
        """
        self.start_turn()
        schema = list(schema or [])
        initial_state: RepairState = {
            "prompt": prompt,
            "history": list(history or []),
            "schema": schema,
            "samples": await self._load_samples(schema),
            "last_good_sql": current_sql or None,
            "sql": None,
            "explanation": None,
            "status": "ok",
            "invalid_reason": None,
            "clarifying_questions": [],
            "failure": None,
            "error": None,
            "row_count": None,
            "execution_time": 0,
            "columns": [],
            "rows": [],
            "validation": None,
            "attempts": 0,
            "invalid_retries": 0,
            "outcome": None,
            "entries": [],
        }

        logger.info(f"Starting chat turn: {prompt[:100]}")
        result = await self.graph.ainvoke(
            initial_state, config={"recursion_limit": self._recursion_limit()}
        )

        self.attempts = 0 if result.get("outcome") == "success" else result.get("attempts", 0)
        report = RepairReport(
            outcome=result.get("outcome") or "error",
            sql=result.get("sql"),
            explanation=result.get("explanation"),
            attempts=result.get("attempts", 0),
            row_count=result.get("row_count"),
            columns=result.get("columns", []),
            rows=result.get("rows", []),
            error=result.get("error"),
            clarifying_questions=result.get("clarifying_questions", []),
            validation=result.get("validation"),
            entries=result.get("entries", []),
        )
        logger.info(
            f"Chat turn finished: {report.outcome}",
            extra={"outcome": report.outcome, "attempts": report.attempts},
        )
        return report

    def _recursion_limit(self) -> int:
        # Each repair cycle visits at most three nodes, plus one result check
        return 3 * (self.settings.max_attempts + 1) + 6

    # ========================================================================
    # Graph
    # ========================================================================

    def _build_graph(self):
        workflow = StateGraph(RepairState)

        workflow.add_node("generate", self._run_generate)
        workflow.add_node("execute", self._run_execute)
        workflow.add_node("repair_error", self._run_repair_error)
        workflow.add_node("repair_empty", self._run_repair_empty)
        workflow.add_node("repair_invalid", self._run_repair_invalid)
        workflow.add_node("clarify", self._run_clarify)
        workflow.add_node("fallback", self._run_fallback)
        workflow.add_node("limit", self._run_limit)
        workflow.add_node("validate", self._run_validate)

        workflow.set_entry_point("generate")

        routes = {
            "execute": "execute",
            "clarify": "clarify",
            "repair_invalid": "repair_invalid",
            "fallback": "fallback",
            "end": END,
        }
        for node in ("generate", "repair_error", "repair_empty", "repair_invalid"):
            workflow.add_conditional_edges(node, self._route_generation, routes)

        workflow.add_conditional_edges(
            "execute",
            self._route_execution,
            {
                "repair_error": "repair_error",
                "repair_empty": "repair_empty",
                "validate": "validate",
                "limit": "limit",
                "end": END,
            },
        )
        workflow.add_edge("clarify", END)
        workflow.add_edge("fallback", END)
        workflow.add_edge("limit", END)
        workflow.add_edge("validate", END)

        return workflow.compile()

    def _route_generation(self, state: RepairState) -> str:
        if state.get("outcome"):
            return "end"
        status = state.get("status")
        if status == "ok":
            return "execute"
        if status == "clarification":
            return "clarify"
        if status == "invalid" and self._can_repair(state) and state.get("invalid_retries", 0) < 1:
            return "repair_invalid"
        return "fallback"

    def _route_execution(self, state: RepairState) -> str:
        failure = state.get("failure")
        if failure is None:
            return "validate" if self.settings.validate_results else "end"
        if not self._can_repair(state):
            logger.warning(
                f"Repair limit reached after {state.get('attempts', 0)} attempts",
                extra={"failure": failure},
            )
            return "limit"
        return "repair_error" if failure == "error" else "repair_empty"

    def _can_repair(self, state: RepairState) -> bool:
        return state.get("attempts", 0) < self.settings.max_attempts

    # ========================================================================
    # Nodes
    # ========================================================================

    async def _run_generate(self, state: RepairState) -> RepairState:
        output = await self.generator(self._generator_input(state, state["prompt"]))
        self._apply_generation(state, state["prompt"], output)
        return state

    async def _run_execute(self, state: RepairState) -> RepairState:
        sql = state["sql"] or ""
        try:
            executed = await self.run_query(sql)
        except ConnectorError as e:
            message = e.message or "Query execution failed"
            prefix = "Query still has an error" if state.get("attempts", 0) else "Query error"
            state.update(failure="error", error=message, row_count=None, columns=[], rows=[])
            self._add_entry(state, "system", f"{prefix}: {message}")
            return state

        result = executed.result
        state.update(
            error=None,
            row_count=result.row_count,
            execution_time=round(result.execution_time_ms),
            columns=result.columns,
            rows=result.rows,
        )
        if result.row_count == 0:
            state["failure"] = "empty"
            self._add_entry(state, "system", "Query executed but returned no rows.")
            return state

        state["failure"] = None
        state["outcome"] = "success"
        state["last_good_sql"] = sql
        if state.get("attempts", 0):
            self._add_entry(state, "system", f"Query fixed! {result.row_count} rows returned.")
        else:
            self._add_entry(state, "system", f"Query returned {result.row_count} rows.")
        return state

    async def _run_repair_error(self, state: RepairState) -> RepairState:
        state["attempts"] = state.get("attempts", 0) + 1
        prompt = ERROR_REPAIR_PROMPT.format(error=state.get("error"))
        request = self._generator_input(
            state,
            prompt,
            query_result=QueryResultInfo(error=state.get("error")),
        )
        output = await self._repair_call(state, request)
        if output is not None:
            self._apply_generation(state, prompt, output)
        return state

    async def _run_repair_empty(self, state: RepairState) -> RepairState:
        state["attempts"] = state.get("attempts", 0) + 1
        self._add_entry(state, "system", "No rows returned. Analyzing query to find the issue...")

        request = self._generator_input(
            state,
            EMPTY_REPAIR_PROMPT,
            mode="debug",
            query_result=QueryResultInfo(row_count=0),
            is_debug=True,
        )
        output = await self._repair_call(state, request)
        if output is None:
            return state

        debug_info = output.result.debug_info
        diagnostics: list[str] = []
        if debug_info and debug_info.needs_more_data and debug_info.suggested_queries:
            limit = self.settings.max_diagnostic_queries
            diagnostics = await self._run_diagnostics(debug_info.suggested_queries[:limit])

        if not diagnostics:
            self._apply_generation(state, EMPTY_REPAIR_PROMPT, output)
            return state

        self._add_entry(state, "system", "Running diagnostic queries to understand the data...")
        self._remember(state, EMPTY_REPAIR_PROMPT, output)
        request = self._generator_input(
            state,
            DIAGNOSTIC_REPAIR_PROMPT,
            diagnostic_context="\n\n".join(diagnostics),
            is_debug=True,
        )
        corrected = await self._repair_call(state, request)
        if corrected is not None:
            self._apply_generation(state, DIAGNOSTIC_REPAIR_PROMPT, corrected)
        return state

    async def _run_repair_invalid(self, state: RepairState) -> RepairState:
        state["attempts"] = state.get("attempts", 0) + 1
        state["invalid_retries"] = state.get("invalid_retries", 0) + 1
        prompt = INVALID_REPAIR_PROMPT.format(
            reason=state.get("invalid_reason") or "no SQL found",
            prompt=state["prompt"],
        )
        output = await self._repair_call(
            state, self._generator_input(state, prompt, require_sql=True)
        )
        if output is not None:
            self._apply_generation(state, prompt, output)
        return state

    async def _run_clarify(self, state: RepairState) -> RepairState:
        state["outcome"] = "clarification"
        return state

    async def _run_fallback(self, state: RepairState) -> RepairState:
        last_good = state.get("last_good_sql")
        reason = state.get("invalid_reason") or "No SQL provided"
        if last_good:
            state.update(outcome="fallback", sql=last_good)
            self._add_entry(
                state,
                "system",
                f"Could not produce a valid query ({reason}). Keeping the previous query.",
                sql=last_good,
            )
            return state

        message = f"I couldn't generate a valid SQL query. {reason}"
        state.update(
            outcome="invalid",
            sql=None,
            error=message,
            clarifying_questions=list(DEFAULT_CLARIFYING_QUESTIONS),
        )
        return state

    async def _run_limit(self, state: RepairState) -> RepairState:
        state["outcome"] = "repair_limit"
        if state.get("failure") != "error":
            self._add_entry(state, "system", EMPTY_LIMIT_MESSAGE)
            return state

        # A query that still fails never replaces the last one that ran
        last_good = state.get("last_good_sql")
        if last_good:
            state["sql"] = last_good
        self._add_entry(state, "system", ERROR_LIMIT_MESSAGE, sql=last_good)
        return state

    async def _run_validate(self, state: RepairState) -> RepairState:
        sql = state.get("sql") or ""
        rows = state.get("rows", [])
        row_count = state.get("row_count") or 0
        request = self._generator_input(
            state,
            RESULT_CHECK_PROMPT,
            mode="validate",
            query_result=QueryResultInfo(
                row_count=row_count,
                execution_time=state.get("execution_time", 0),
                sample_rows=rows[:3],
                empty_columns=find_empty_columns(state.get("columns", []), rows),
            ),
        )
        try:
            output = await self.generator(request)
        except AgentError as e:
            logger.warning(f"Result validation failed: {describe_provider_error(e)}")
            self._add_entry(state, "system", "Query executed successfully")
            return state

        validation = output.result.validation
        state["validation"] = validation
        if validation is None:
            self._add_entry(state, "system", "Query executed successfully")
            return state
        if validation.is_valid:
            summary = output.result.explanation or "Results look correct."
            self._add_entry(state, "system", f"{row_count} rows returned. {summary}")
            return state
        if not validation.issues:
            self._add_entry(state, "system", "Query executed successfully")
            return state

        issues = ". ".join(validation.issues)
        fixed_sql = output.result.sql.strip()
        if output.status != "ok" or not fixed_sql or fixed_sql == sql.strip():
            self._add_entry(state, "system", f"{row_count} rows returned. {issues}")
            return state

        self._add_entry(state, "system", f"Found issues: {issues}. Attempting to fix...")
        self._add_entry(
            state,
            "assistant",
            output.result.explanation or "Fixed the query based on result analysis.",
            sql=fixed_sql,
            explanation=output.result.explanation,
            is_auto_fix=True,
        )
        await self._run_result_fix(state, fixed_sql, output.result.explanation)
        return state

    async def _run_result_fix(self, state: RepairState, sql: str, explanation: str) -> None:
        """Run the validator's query once; keep the working one unless it returns rows."""
        try:
            executed = await self.run_query(sql)
        except ConnectorError as e:
            self._add_entry(state, "system", f"Fixed query error: {e.message}", is_auto_fix=True)
            return

        result = executed.result
        if result.row_count == 0:
            self._add_entry(state, "system", "Fixed query still returned no rows.", is_auto_fix=True)
            return

        state.update(
            sql=sql,
            last_good_sql=sql,
            explanation=explanation,
            row_count=result.row_count,
            execution_time=round(result.execution_time_ms),
            columns=result.columns,
            rows=result.rows,
        )
        self._add_entry(
            state, "system", f"Query fixed! {result.row_count} rows returned.", is_auto_fix=True
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _load_samples(self, schema: list[SchemaInfo]) -> list[TableSample]:
        if self.fetch_samples is None or not schema:
            return []
        try:
            return await self.fetch_samples(schema)
        except ConnectorError as e:
            logger.warning(f"Sample data unavailable: {e.message}")
            return []

    def _generator_input(self, state: RepairState, prompt: str, **overrides: Any) -> SQLGeneratorInput:
        return SQLGeneratorInput(
            query=prompt,
            conversation_history=state.get("history", []),
            schema_snapshot=state.get("schema", []),
            current_sql=state.get("sql") or state.get("last_good_sql"),
            sample_data=state.get("samples", []),
            **overrides,
        )

    async def _repair_call(
        self, state: RepairState, request: SQLGeneratorInput
    ) -> SQLGeneratorOutput | None:
        """Run a corrective generation; provider failures end the turn."""
        try:
            return await self.generator(request)
        except AgentError as e:
            message = describe_provider_error(e)
            logger.warning(f"Repair generation failed: {message}")
            state.update(outcome="error", error=message)
            self._add_entry(state, "assistant", message)
            return None

    def _apply_generation(self, state: RepairState, prompt: str, output: SQLGeneratorOutput) -> None:
        generated = output.result
        state.update(
            status=output.status,
            invalid_reason=output.invalid_reason,
            explanation=generated.explanation,
            clarifying_questions=generated.clarifying_questions,
        )
        if output.status in ("ok", "clarification") and generated.sql:
            state["sql"] = generated.sql

        diagnosis = generated.debug_info.diagnosis if generated.debug_info else None
        content = diagnosis or generated.explanation or "Adjusted the query."
        self._add_entry(
            state,
            "assistant",
            content,
            sql=generated.sql or None,
            explanation=generated.explanation,
            clarifying_questions=generated.clarifying_questions,
        )
        self._remember(state, prompt, output)

    def _remember(self, state: RepairState, prompt: str, output: SQLGeneratorOutput) -> None:
        """Append the exchange to the history sent with later corrections."""
        history = state.setdefault("history", [])
        history.append(Message(role="user", content=prompt))
        history.append(
            Message(
                role="assistant",
                content=json.dumps(
                    {"sql": output.result.sql, "explanation": output.result.explanation}
                ),
            )
        )

    async def _run_diagnostics(self, queries: list[str]) -> list[str]:
        results: list[str] = []
        for query in queries:
            try:
                executed = await self.run_query(query)
            except ConnectorError as e:
                logger.debug(f"Diagnostic query failed: {e.message}")
                continue
            results.append(f"Query: {query}\nRows: {executed.result.row_count}")
        return results

    def _add_entry(self, state: RepairState, role: str, content: str, **fields: Any) -> None:
        fields.setdefault("is_auto_fix", state.get("attempts", 0) > 0)
        state.setdefault("entries", []).append(RepairEntry(role=role, content=content, **fields))
