import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import ValidationError

from pageeditor.dependencies import get_store
from pageeditor.models.block import ContentBlock
from pageeditor.models.blocks_request import PageBlocksResponse, SaveBlocksRequest, SingleBlockRequest
from pageeditor.services.block_store import BlockStore, StaleVersionError
from pageeditor.services.gateway import GatewayError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/blocks", tags=["Blocks"])


@router.get("", response_model=PageBlocksResponse, summary="List a page's blocks in render order")
async def list_blocks(
    page_path: str = Query(..., min_length=1, examples=["/eyecare"]),
    store: BlockStore = Depends(get_store),
) -> PageBlocksResponse:
    try:
        page = await store.fetch_page(page_path)
    except GatewayError as exc:
        logger.error("Error fetching blocks for %s: %s", page_path, exc)
        raise HTTPException(status_code=502, detail="Failed to load page blocks.")
    return PageBlocksResponse(page_path=page_path, version=page.version, blocks=page.blocks)


@router.put(
    "",
    response_model=PageBlocksResponse,
    summary="Replace a page's blocks",
    description=(
        "Replaces the page's whole block list in one transaction.  Pass "
        "`base_version` (from the last read) to have the save rejected with "
        "409 when another session saved the page in the meantime."
    ),
)
async def replace_blocks(body: SaveBlocksRequest, store: BlockStore = Depends(get_store)) -> PageBlocksResponse:
    try:
        saved = await store.save_page_blocks(body.page_path, body.blocks, base_version=body.base_version)
    except StaleVersionError as exc:
        logger.warning("Stale save rejected for %s: %s", body.page_path, exc)
        raise HTTPException(status_code=409, detail=str(exc))
    except GatewayError as exc:
        logger.error("Error saving blocks for %s: %s", body.page_path, exc)
        raise HTTPException(status_code=502, detail="Could not save changes. Please try again.")
    return PageBlocksResponse(page_path=body.page_path, version=saved.version, blocks=saved.blocks)


@router.put("/{block_id}", response_model=ContentBlock, summary="Create or update one block")
async def upsert_block(
    block_id: str,
    body: SingleBlockRequest,
    store: BlockStore = Depends(get_store),
) -> ContentBlock:
    try:
        block = ContentBlock(
            id=block_id,
            page_path=body.page_path,
            type=body.type,
            properties=body.properties,
            order_index=body.order_index,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))

    try:
        return await store.save_single_block(block)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except GatewayError as exc:
        logger.error("Error saving block %s: %s", block_id, exc)
        raise HTTPException(status_code=502, detail="Could not save block.")


@router.delete("/{block_id}", status_code=204, summary="Delete one block")
async def delete_block(block_id: str, store: BlockStore = Depends(get_store)) -> Response:
    try:
        page_path = await store.delete_block(block_id)
    except GatewayError as exc:
        logger.error("Error deleting block %s: %s", block_id, exc)
        raise HTTPException(status_code=502, detail="Could not delete block.")
    if page_path is None:
        raise HTTPException(status_code=404, detail="Block not found.")
    return Response(status_code=204)
