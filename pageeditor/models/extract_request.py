from typing import List, Literal

from pydantic import BaseModel, Field

from pageeditor import config


class ExtractOptions(BaseModel):
    include_headings: bool = True
    include_paragraphs: bool = True
    include_lists: bool = True
    include_links: bool = True
    include_images: bool = True
    exclude_paths: List[str] = Field(
        default_factory=lambda: list(config.EXTRACT_EXCLUDE_PATHS),
        description="Pages whose path contains any of these substrings are never extracted.",
    )
    wait_time: int = Field(
        default=config.EXTRACT_WAIT_MS,
        ge=0,
        le=30_000,
        description="Milliseconds to let client-rendered content settle before scanning.",
    )
    render_mode: Literal["browser", "http"] = "browser"
    """How the page snapshot is obtained.

    ``"browser"`` (default)
        Render with headless Chromium; computed styles, box sizes and image
        load state are recorded on the snapshot so the visibility filter is
        exact.

    ``"http"``
        Plain HTTP fetch; visibility is judged from inline styles and
        attributes only.
    """


class ExtractRequest(BaseModel):
    page_path: str = Field(..., min_length=1, examples=["/eyecare"])
    options: ExtractOptions = Field(default_factory=ExtractOptions)


class ExtractAllRequest(BaseModel):
    page_paths: List[str] = Field(..., min_length=1, max_length=50)
    options: ExtractOptions = Field(default_factory=ExtractOptions)
