"""
Query Routes

Direct read-only execution, used by clients to run the final SQL of an
agent run or chat turn.
"""

import logging

from fastapi import APIRouter

from querypilot.config import get_settings
from querypilot.connectors.readonly import DEFAULT_QUERY_LIMIT, run_read_only_query
from querypilot.models.api import FieldInfo, QueryRequest, QueryResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/query", response_model=QueryResponse, response_model_by_alias=True)
async def execute_query(query_request: QueryRequest) -> QueryResponse:
    """
    Execute one read-only statement.

    Rejected statements and database failures are turned into JSON errors
    by the application's ``ConnectorError`` handler.
    """
    settings = get_settings()
    outcome = await run_read_only_query(
        query_request.connection_string,
        query_request.sql,
        settings=settings.database,
        row_limit=DEFAULT_QUERY_LIMIT,
    )
    result = outcome.result
    return QueryResponse(
        rows=result.rows,
        fields=[FieldInfo(name=f.name, data_type_id=f.data_type_id) for f in result.fields],
        row_count=result.row_count,
        execution_time=round(result.execution_time_ms),
        limit_applied=outcome.limit_applied,
        warning=outcome.warning,
    )
