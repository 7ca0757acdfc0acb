from typing import List, Optional

from pydantic import BaseModel, Field

from pageeditor.models.block import BlockDraft, BlockType, ContentBlock


class PageBlocksResponse(BaseModel):
    page_path: str
    version: int
    blocks: List[ContentBlock]


class SaveBlocksRequest(BaseModel):
    page_path: str = Field(..., min_length=1, examples=["/eyecare"])
    blocks: List[BlockDraft]
    base_version: Optional[int] = Field(
        default=None,
        ge=0,
        description="Version the blocks were loaded at; the save is rejected when the page has moved on.",
    )


class SingleBlockRequest(BaseModel):
    page_path: str = Field(..., min_length=1)
    type: BlockType
    properties: dict = Field(default_factory=dict)
    order_index: int = Field(default=0, ge=0)
