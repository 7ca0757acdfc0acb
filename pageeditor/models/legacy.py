from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from pageeditor.models.block import parse_json_bag


class ElementNode(BaseModel):
    """One step of the path from a clicked element up to the document root."""

    tag: str
    id: Optional[str] = None
    classes: List[str] = Field(default_factory=list)


class ElementClick(BaseModel):
    """A click on a rendered element while the legacy element editor is active."""

    page_path: str = Field(..., min_length=1)
    path: List[ElementNode] = Field(
        ...,
        min_length=1,
        description="Clicked element first, then its ancestors up to (not including) <html>.",
    )
    text: str = ""
    attributes: Dict[str, str] = Field(default_factory=dict)
    computed_styles: Dict[str, str] = Field(default_factory=dict)


class LegacyContentItem(BaseModel):
    """A ``website_content`` row keyed by ``(page_path, selector)``."""

    id: Optional[str] = None
    page_path: str
    selector: str
    element_type: str
    content: Optional[str] = None
    image_url: Optional[str] = None
    styles: Dict[str, Any] = Field(default_factory=dict)
    properties: Dict[str, Any] = Field(default_factory=dict)
    order_index: Optional[int] = None

    @field_validator("styles", "properties", mode="before")
    @classmethod
    def _parse_bag(cls, value: Any) -> Dict[str, Any]:
        return parse_json_bag(value)


class ImportRequest(BaseModel):
    page_path: str = Field(..., min_length=1)
    base_version: Optional[int] = None
