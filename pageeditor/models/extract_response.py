from typing import Dict, List, Optional

from pydantic import BaseModel


class ContentRecord(BaseModel):
    """One row of the ``content_blocks`` table produced by extraction."""

    id: Optional[str] = None
    page: str
    section: str
    name: str
    title: Optional[str] = None
    content: Optional[str] = None
    image_url: Optional[str] = None
    specialty: str = "general"
    order_index: Optional[int] = None


class ExtractResponse(BaseModel):
    page_path: str
    extracted: bool
    records: List[ContentRecord]


class ExtractAllResponse(BaseModel):
    results: Dict[str, bool]
