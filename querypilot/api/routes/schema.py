"""
Schema Routes

Introspects the target database so clients can pass a schema snapshot into
agent runs and chat turns, and samples rows so prompts can show real values
and JSON structures.
"""

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from querypilot.config import get_settings
from querypilot.connectors.factory import create_connector
from querypilot.connectors.sampling import fetch_sample_data
from querypilot.models.api import (
    SampleDataRequest,
    SampleDataResponse,
    SchemaRequest,
    SchemaResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/schema", response_model=SchemaResponse, response_model_by_alias=True)
async def fetch_schema(schema_request: SchemaRequest) -> SchemaResponse:
    """Return user tables and views with their columns."""
    settings = get_settings()
    async with create_connector(schema_request.connection_string, settings.database) as connector:
        tables = await connector.get_schema()
    logger.info(f"Schema fetched: {len(tables)} tables")
    return SchemaResponse(tables=tables)


@router.post("/sample-data", response_model=SampleDataResponse, response_model_by_alias=True)
async def sample_data(sample_request: SampleDataRequest) -> SampleDataResponse | JSONResponse:
    """
    Return a few truncated rows per table.

    At most ten tables and five rows per table are sampled; tables that
    cannot be read are left out of the response.
    """
    if not sample_request.connection_string:
        missing = "connectionString"
    elif not sample_request.tables:
        missing = "tables"
    else:
        missing = None
    if missing:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": f"Missing required field: {missing}"},
        )

    settings = get_settings()
    samples = await fetch_sample_data(
        sample_request.connection_string,
        sample_request.tables,
        sample_request.sample_size,
        settings.database,
    )
    logger.info(f"Sampled {len(samples)} tables")
    return SampleDataResponse(samples=samples)
