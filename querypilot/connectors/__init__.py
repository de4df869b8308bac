"""
Database Connectors Module

Single-connection async database connectors.

Available Connectors:
    - BaseConnector: Abstract base class
    - PostgresConnector: PostgreSQL connector (asyncpg)

Helpers:
    - create_connector: build an unopened connector from a URL
    - run_read_only_query: gated execution used outside the agent tools
    - fetch_sample_data: a few truncated rows per table for prompt context

Usage:
    from querypilot.connectors import PostgresConnector

    async with PostgresConnector(connection_string, connect_timeout=10) as connector:
        result = await connector.execute("SELECT * FROM users")
        tables = await connector.get_schema()
"""

from querypilot.connectors.base import (
    BaseConnector,
    ConnectionError,
    ConnectorError,
    QueryError,
    QueryResult,
    ResultField,
    SchemaError,
)
from querypilot.connectors.factory import create_connector
from querypilot.connectors.postgres import PostgresConnector
from querypilot.connectors.readonly import (
    DEFAULT_QUERY_LIMIT,
    QueryRejectedError,
    ReadOnlyResult,
    run_read_only_query,
)
from querypilot.connectors.sampling import fetch_json_samples, fetch_sample_data

__all__ = [
    "BaseConnector",
    "PostgresConnector",
    "create_connector",
    "run_read_only_query",
    "fetch_sample_data",
    "fetch_json_samples",
    "DEFAULT_QUERY_LIMIT",
    "QueryResult",
    "ReadOnlyResult",
    "ResultField",
    "ConnectorError",
    "ConnectionError",
    "QueryError",
    "QueryRejectedError",
    "SchemaError",
]
