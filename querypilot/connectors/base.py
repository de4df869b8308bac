"""
Base Database Connector

Abstract base class for database connectors. A connector wraps exactly one
connection: callers open it, run a statement (or a small fixed batch), and
close it in a ``finally`` block or through ``async with``. There is no
pooling and no reuse across tool calls.

All connectors must implement:
- connect(): Open the connection within the connect timeout
- execute(): Run one statement within the statement timeout
- get_schema(): Introspect tables, views and columns
- close(): Release the connection (idempotent)
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from querypilot.models.base import CamelModel
from querypilot.models.errors import QueryPilotError
from querypilot.models.schema import SchemaInfo

logger = logging.getLogger(__name__)


# ============================================================================
# Data Models
# ============================================================================


class ResultField(CamelModel):
    """Column descriptor of a result set."""

    name: str = Field(..., description="Column name")
    data_type_id: int = Field(..., alias="dataTypeID", description="PostgreSQL type OID")


class QueryResult(BaseModel):
    """Result from query execution."""

    rows: list[dict[str, Any]] = Field(..., description="Query result rows")
    fields: list[ResultField] = Field(..., description="Column descriptors")
    row_count: int = Field(..., description="Number of rows returned")
    execution_time_ms: float = Field(..., description="Round-trip time in ms")

    @property
    def columns(self) -> list[str]:
        return [field.name for field in self.fields]


class ConnectorError(QueryPilotError):
    """Base exception for connector errors.

    Attributes:
        code: SQLSTATE or driver error code when one is known
    """

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code
        super().__init__(message)


class ConnectionError(ConnectorError):
    """Error establishing or managing database connection."""


class QueryError(ConnectorError):
    """Error executing database query."""


class SchemaError(ConnectorError):
    """Error introspecting database schema."""


# ============================================================================
# Base Connector
# ============================================================================


class BaseConnector(ABC):
    """
    Abstract base class for single-connection database connectors.

    Usage:
        async with PostgresConnector(connection_string) as connector:
            result = await connector.execute("SELECT 1")
    """

    def __init__(
        self,
        connection_string: str,
        connect_timeout: float = 10.0,
        statement_timeout: float = 30.0,
    ):
        """
        Initialize connector.

        Args:
            connection_string: Database URL
            connect_timeout: Seconds allowed for the connection attempt
            statement_timeout: Seconds allowed for each statement
        """
        self.connection_string = connection_string
        self.connect_timeout = connect_timeout
        self.statement_timeout = statement_timeout
        self._connection = None

    @abstractmethod
    async def connect(self) -> None:
        """
        Open the connection.

        Raises:
            ConnectionError: If connection fails
        """

    @abstractmethod
    async def execute(self, query: str) -> QueryResult:
        """
        Execute one SQL statement.

        Raises:
            QueryError: If query execution fails
            ConnectionError: If not connected
        """

    @abstractmethod
    async def get_schema(self) -> list[SchemaInfo]:
        """
        Introspect user tables and views.

        Raises:
            SchemaError: If schema introspection fails
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def __repr__(self) -> str:
        status = "connected" if self.is_connected else "disconnected"
        return f"<{self.__class__.__name__} ({status})>"
