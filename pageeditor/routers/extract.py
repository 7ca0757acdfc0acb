"""Content extraction endpoints: snapshot site pages into content records."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from pageeditor.dependencies import get_gateway
from pageeditor.models.extract_request import ExtractAllRequest, ExtractRequest
from pageeditor.models.extract_response import ExtractAllResponse, ExtractResponse
from pageeditor.services.extractor import extract_all_pages, extract_current_page, fetch_records
from pageeditor.services.gateway import Gateway, GatewayError

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter(prefix="/extract", tags=["Extraction"])


@router.post(
    "",
    response_model=ExtractResponse,
    summary="Extract the visible content of one page",
    description=(
        "Renders the page, collects its visible headings, paragraphs, lists, "
        "links and images, and replaces the page's stored content records "
        "with them.  Pages matching `options.exclude_paths` are skipped "
        "(`extracted: false`, nothing stored or deleted)."
    ),
)
@limiter.limit("10/minute")
async def extract_page(
    request: Request,
    body: ExtractRequest,
    gateway: Gateway = Depends(get_gateway),
) -> ExtractResponse:
    logger.info(
        "Extract request received",
        extra={"page_path": body.page_path, "render_mode": body.options.render_mode},
    )
    extracted = await extract_current_page(body.page_path, gateway, body.options)

    try:
        records = await fetch_records(body.page_path, gateway)
    except GatewayError as exc:
        logger.error("Error reading content records for %s: %s", body.page_path, exc)
        raise HTTPException(status_code=502, detail="Could not read extracted content.")

    return ExtractResponse(page_path=body.page_path, extracted=extracted, records=records)


@router.post("/all", response_model=ExtractAllResponse, summary="Extract several pages one after another")
@limiter.limit("2/minute")
async def extract_pages(
    request: Request,
    body: ExtractAllRequest,
    gateway: Gateway = Depends(get_gateway),
) -> ExtractAllResponse:
    logger.info("Bulk extract request received", extra={"pages": len(body.page_paths)})
    results = await extract_all_pages(body.page_paths, gateway, body.options)
    return ExtractAllResponse(results=results)
