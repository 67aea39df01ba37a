"""
Pydantic model for the 'products' collection (fields read by the exchange core only).
"""

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from src.models.base import DocumentModel


class Product(DocumentModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str | None = None
    user_id: str | None = None
    image_urls: list[str] | None = None
