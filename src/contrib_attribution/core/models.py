"""Shared model base and non-fatal warning types."""

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model serialized with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class WarningCode(str, Enum):
    """Conditions that degrade a result without failing it."""
    PARTIAL_HYDRATION = "PARTIAL_HYDRATION"
    CORRUPT_FILE_SKIPPED = "CORRUPT_FILE_SKIPPED"
    PAGE_LIMIT_REACHED = "PAGE_LIMIT_REACHED"


class AnalysisWarning(ApiModel):
    """A completeness warning attached to a successful result."""
    code: WarningCode
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
