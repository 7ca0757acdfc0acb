import json
import logging
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

BlockType = Literal["heading", "paragraph", "image", "button"]

_BUTTON_VARIANTS = ("default", "primary", "secondary", "outline")


def parse_json_bag(value: Any) -> Dict[str, Any]:
    """Return *value* as a dict, parsing JSON strings.

    Rows written by older clients sometimes hold the property bag as a JSON
    string.  Anything that is not a JSON object becomes an empty dict.
    """
    if not value:
        return {}
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            logger.warning("Discarding malformed JSON property bag: %.80s", value)
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _coerce_level(value: Any) -> int:
    if isinstance(value, str):
        value = value.strip().lower().lstrip("h")
    try:
        level = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid heading level: {value!r}")
    if not 1 <= level <= 6:
        raise ValueError("Heading level must be between 1 and 6.")
    return level


def normalize_properties(block_type: str, properties: Any) -> Dict[str, Any]:
    """Fill in and coerce the fields that are meaningful for *block_type*.

    Keys the editor does not know about are preserved untouched.
    """
    props = parse_json_bag(properties)

    if block_type == "heading":
        props["text"] = str(props.get("text") or "")
        props["level"] = _coerce_level(props.get("level", 2))
    elif block_type == "paragraph":
        props["text"] = str(props.get("text") or "")
    elif block_type == "image":
        props["src"] = str(props.get("src") or "")
        props["alt"] = str(props.get("alt") or "")
    elif block_type == "button":
        props["text"] = str(props.get("text") or "")
        props["url"] = str(props.get("url") or "")
        variant = props.get("variant") or "default"
        props["variant"] = variant if variant in _BUTTON_VARIANTS else "default"

    return props


class BlockDraft(BaseModel):
    """A block as sent by the editing surface (no page path, id optional)."""

    id: Optional[str] = None
    type: BlockType
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _parse_properties(cls, value: Any) -> Dict[str, Any]:
        return parse_json_bag(value)

    @model_validator(mode="after")
    def _normalize(self) -> "BlockDraft":
        self.properties = normalize_properties(self.type, self.properties)
        return self


class ContentBlock(BaseModel):
    """One typed, ordered unit of page content."""

    id: Optional[str] = None
    page_path: str
    type: BlockType
    properties: Dict[str, Any] = Field(default_factory=dict)
    order_index: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("properties", mode="before")
    @classmethod
    def _parse_properties(cls, value: Any) -> Dict[str, Any]:
        return parse_json_bag(value)

    @model_validator(mode="after")
    def _normalize(self) -> "ContentBlock":
        self.properties = normalize_properties(self.type, self.properties)
        return self

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ContentBlock":
        """Build a block from a ``blocks`` table row (property bag lives in ``content``).

        A stored heading whose level is out of range falls back to the
        default level instead of failing the whole page.
        """
        fields = dict(
            id=row.get("id"),
            page_path=row["page_path"],
            type=row["type"],
            properties=row.get("content"),
            order_index=row.get("order_index") or 0,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )
        try:
            return cls(**fields)
        except ValidationError:
            if row.get("type") != "heading":
                raise
            properties = parse_json_bag(row.get("content"))
            logger.warning(
                "Block %s has invalid heading level %r; using the default",
                row.get("id"),
                properties.pop("level", None),
            )
            fields["properties"] = properties
            return cls(**fields)

    def to_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "page_path": self.page_path,
            "type": self.type,
            "content": self.properties,
            "order_index": self.order_index,
        }
        if self.id:
            row["id"] = self.id
        return row
