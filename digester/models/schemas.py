"""
Pydantic Models and Schemas
===========================

Data models describing a digester run: its lifecycle state, where in the
source document an event happened, and the outcome handed back to callers.
"""

from typing import Optional, List, Any
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


# Enums
class DigesterState(str, Enum):
    """Lifecycle state of a Digester instance."""
    IDLE = "idle"
    IN_DOCUMENT = "in-document"
    FINISHED = "finished"
    FAILED = "failed"


class SourceFormat(str, Enum):
    """Formats accepted for declarative rule definitions."""
    JSON = "json"
    YAML = "yaml"


class DocumentLocation(BaseModel):
    """Position of the parser in the source document."""
    line: Optional[int] = Field(None, ge=0, description="1-based line number")
    column: Optional[int] = Field(None, ge=0, description="Column number, when known")
    public_id: Optional[str] = Field(None, description="Public identifier of the document")
    system_id: Optional[str] = Field(None, description="System identifier (URL or path)")

    def describe(self) -> str:
        """Render the location the way error messages show it."""
        line = self.line if self.line is not None else "?"
        column = self.column if self.column is not None else "?"
        return f"({line}, {column})"


class ParseResult(BaseModel):
    """Outcome of a complete digester run."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool = Field(..., description="Whether the run produced a root object")
    root: Optional[Any] = Field(None, description="Result root of the object graph")
    errors: List[str] = Field(default_factory=list, description="Terminal error, if any")
    path: Optional[str] = Field(None, description="Match path at the point of failure")
    location: Optional[DocumentLocation] = None
    processing_time: float = Field(0.0, ge=0.0, description="Run time in seconds")

    @model_validator(mode="after")
    def check_outcome(self) -> "ParseResult":
        """A run either produced a root or failed with a single error."""
        if self.success and self.errors:
            raise ValueError("Successful result cannot carry errors")
        if not self.success and len(self.errors) != 1:
            raise ValueError("Failed result must carry exactly one error")
        return self
