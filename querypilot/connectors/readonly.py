"""
Read-only query execution outside the agent tools.

The direct query route and the chat-mode repair loop run SQL through
``run_read_only_query``: both gates first, then a default LIMIT when the
outer statement has none, then one statement on a fresh connection.
"""

import logging

from pydantic import BaseModel

from querypilot.config import DatabaseSettings
from querypilot.connectors.base import QueryError, QueryResult
from querypilot.connectors.factory import create_connector
from querypilot.utils.sql_guard import GateRejection, apply_row_limit, check_read_only

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 1000

REJECTION_MESSAGES = {
    GateRejection.MUTATION: (
        "Only SELECT queries are allowed. Mutation queries "
        "(INSERT, UPDATE, DELETE, DROP, etc.) are blocked for safety."
    ),
    GateRejection.PREFIX: "Query must start with SELECT, WITH, or EXPLAIN.",
}


class QueryRejectedError(QueryError):
    """The statement failed the read-only gates and was never sent."""

    def __init__(self, reason: GateRejection):
        self.reason = reason
        super().__init__(REJECTION_MESSAGES[reason], code="read_only")


class ReadOnlyResult(BaseModel):
    """Outcome of a gated execution."""

    sql: str
    result: QueryResult
    limit_applied: bool = False
    limit: int

    @property
    def warning(self) -> str | None:
        if self.limit_applied and self.result.row_count >= self.limit:
            return (
                f"Results limited to {self.limit} rows. "
                "Add your own LIMIT clause to override."
            )
        return None


async def run_read_only_query(
    connection_string: str,
    sql: str,
    settings: DatabaseSettings | None = None,
    row_limit: int = DEFAULT_QUERY_LIMIT,
) -> ReadOnlyResult:
    """
    Gate and execute one read-only statement.

    Raises:
        QueryRejectedError: If the SQL fails the mutation or prefix gate
        ConnectorError: If connecting or executing fails
    """
    rejection = check_read_only(sql)
    if rejection is not None:
        logger.warning(f"Rejected query ({rejection}): {sql[:100]}")
        raise QueryRejectedError(rejection)

    query_to_run, limit_applied = apply_row_limit(sql, row_limit)
    async with create_connector(connection_string, settings) as connector:
        result = await connector.execute(query_to_run)

    logger.info(
        f"Query returned {result.row_count} rows",
        extra={"rows": result.row_count, "elapsed_ms": round(result.execution_time_ms)},
    )
    return ReadOnlyResult(
        sql=query_to_run,
        result=result,
        limit_applied=limit_applied,
        limit=row_limit,
    )
