"""
Schema Snapshot Models

Immutable description of the tables a run may query. A snapshot is taken
before a run starts and is never refreshed while the run is in flight.
"""

from typing import Any, Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from querypilot.models.base import CamelModel


class SchemaColumn(CamelModel):
    """Single column of a table or view."""

    name: str
    type: str
    is_primary_key: bool = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class SchemaInfo(CamelModel):
    """Table or view with its columns."""

    name: str
    schema_name: str = Field(default="public", alias="schema")
    type: Literal["table", "view"] = "table"
    columns: tuple[SchemaColumn, ...] = ()

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    @property
    def qualified_name(self) -> str:
        """Quoted name usable verbatim in SQL."""
        if self.schema_name == "public":
            return f'"{self.name}"'
        return f'"{self.schema_name}"."{self.name}"'


class TableSample(CamelModel):
    """A few rows of one table, with example values for its JSON columns."""

    table: str
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    json_field_samples: dict[str, list[Any]] | None = None
