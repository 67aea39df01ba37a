"""
Shared base for Pydantic models persisted as documents.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class DocumentModel(BaseModel):
    """Stored with camelCase field names; ``id`` is the document key and never stored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str | None = Field(None, exclude=True)

    @classmethod
    def from_document(cls, document):
        return cls.model_validate({**(document.data or {}), "id": document.id})

    def to_document(self) -> dict[str, Any]:
        return _plain(self.model_dump(by_alias=True, exclude_none=True))

    def to_response(self) -> dict[str, Any]:
        return {"id": self.id, **self.model_dump(by_alias=True, mode="json")}
