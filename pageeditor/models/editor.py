from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from pageeditor.models.block import BlockDraft, ContentBlock

SessionState = Literal["loading", "preview", "editing"]


class Notice(BaseModel):
    """A toast shown to the operator."""

    title: str
    description: str
    variant: Literal["default", "destructive"] = "default"


class OpenSessionRequest(BaseModel):
    page_path: str = Field(..., min_length=1, examples=["/eyecare"])


class BlocksChangedRequest(BaseModel):
    blocks: List[BlockDraft]


class SaveRequest(BaseModel):
    blocks: Optional[List[BlockDraft]] = Field(
        default=None,
        description="Blocks to publish; the session's current draft is used when omitted.",
    )


class ChangeAccepted(BaseModel):
    accepted: bool


class SessionView(BaseModel):
    id: str
    page_path: str
    state: SessionState
    preview_key: int
    preview_url: str
    version: int
    base_version: Optional[int]
    blocks: List[ContentBlock]
    draft: Optional[List[BlockDraft]]
    draft_stale: bool
    save_failure: Optional[Literal["stale", "error"]] = None
    listeners_attached: bool
    change_count: int
    notices: List[Notice]
