"""Element editor content and its one-way import into blocks."""

import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from pageeditor.dependencies import get_gateway, get_store
from pageeditor.models.blocks_request import PageBlocksResponse
from pageeditor.models.legacy import ElementClick, ImportRequest, LegacyContentItem
from pageeditor.services.block_store import BlockStore, StaleVersionError
from pageeditor.services.gateway import Gateway, GatewayError
from pageeditor.services.legacy import fetch_page_content, import_legacy_content, record_element_click

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/legacy", tags=["Element editor"])


@router.post("/elements", response_model=LegacyContentItem, summary="Store the content of a clicked element")
async def save_element(body: ElementClick, gateway: Gateway = Depends(get_gateway)) -> LegacyContentItem:
    try:
        return await record_element_click(body, gateway)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except GatewayError as exc:
        logger.error("Error saving element content for %s: %s", body.page_path, exc)
        raise HTTPException(status_code=502, detail="Could not save changes.")


@router.get("/content", response_model=Dict[str, LegacyContentItem], summary="A page's element edits by selector")
async def page_content(
    page_path: str = Query(..., min_length=1),
    gateway: Gateway = Depends(get_gateway),
) -> Dict[str, LegacyContentItem]:
    try:
        return await fetch_page_content(page_path, gateway)
    except GatewayError as exc:
        logger.error("Error loading element content for %s: %s", page_path, exc)
        raise HTTPException(status_code=502, detail="Failed to load page content.")


@router.post(
    "/import",
    response_model=PageBlocksResponse,
    summary="Convert a page's older content into blocks",
    description=(
        "Replaces the page's blocks with its extracted content records, or "
        "with its element edits when nothing was extracted.  Returns 404 "
        "when the page has neither."
    ),
)
async def import_content(
    body: ImportRequest,
    gateway: Gateway = Depends(get_gateway),
    store: BlockStore = Depends(get_store),
) -> PageBlocksResponse:
    try:
        saved = await import_legacy_content(body.page_path, gateway, store, base_version=body.base_version)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except StaleVersionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except GatewayError as exc:
        logger.error("Error importing content for %s: %s", body.page_path, exc)
        raise HTTPException(status_code=502, detail="Could not import page content.")
    return PageBlocksResponse(page_path=body.page_path, version=saved.version, blocks=saved.blocks)
