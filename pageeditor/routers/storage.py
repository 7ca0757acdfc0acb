import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from pageeditor.dependencies import get_gateway
from pageeditor.services.gateway import Gateway, GatewayError
from pageeditor.services.storage import MAX_UPLOAD_SIZE, upload_logo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Storage"])


@router.post("/storage/logo", summary="Replace the site logo")
async def replace_logo(
    request: Request,
    file: UploadFile = File(...),
    gateway: Gateway = Depends(get_gateway),
) -> dict:
    data = await file.read(MAX_UPLOAD_SIZE + 1)
    try:
        branding = await upload_logo(gateway, file.filename or "", data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except GatewayError as exc:
        logger.error("Error uploading logo: %s", exc)
        raise HTTPException(status_code=502, detail="Could not upload the logo.")
    request.app.state.branding = branding
    return {"url": branding.logo_url}


@router.get("/branding", summary="Current site branding")
async def get_branding(request: Request) -> dict:
    return {"logo_url": request.app.state.branding.logo_url}
