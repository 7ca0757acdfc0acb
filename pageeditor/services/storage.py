"""Object storage helpers and site branding."""

import logging
from typing import NamedTuple

from pageeditor import config
from pageeditor.services.gateway import Gateway, GatewayError

logger = logging.getLogger(__name__)

MAX_UPLOAD_SIZE = 5 * 1024 * 1024  # 5 MB

_IMAGE_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "webp": "image/webp",
}


class Branding(NamedTuple):
    """Site-wide branding derived from configuration."""

    logo_url: str


def _extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def logo_object_path(extension: str = config.LOGO_DEFAULT_EXTENSION) -> str:
    return f"{config.LOGO_PATH}.{extension}"


def branding(gateway: Gateway, extension: str = config.LOGO_DEFAULT_EXTENSION) -> Branding:
    return Branding(logo_url=gateway.public_url(config.STORAGE_BUCKET, logo_object_path(extension)))


async def upload_file(gateway: Gateway, bucket: str, path: str, data: bytes, content_type: str) -> str:
    """Store *data* at *path* (overwriting) and return its public URL."""
    if len(data) > MAX_UPLOAD_SIZE:
        raise ValueError("File exceeds the maximum upload size.")
    stored_path = await gateway.upload(bucket, path, data, content_type=content_type, upsert=True)
    return gateway.public_url(bucket, stored_path)


async def upload_logo(gateway: Gateway, filename: str, data: bytes) -> Branding:
    """Store a new site logo at the configured location and return the branding that points at it."""
    extension = _extension(filename)
    if extension not in _IMAGE_TYPES:
        raise ValueError(f"Unsupported logo file type: {filename!r}")
    url = await upload_file(
        gateway, config.STORAGE_BUCKET, logo_object_path(extension), data, _IMAGE_TYPES[extension]
    )
    logger.info("Uploaded site logo", extra={"url": url})
    return Branding(logo_url=url)


async def resolve_branding(gateway: Gateway) -> Branding:
    """Point the branding at the logo actually stored, whatever its file type.

    When several logo files exist the most recently updated one wins; with
    none, or when the bucket cannot be listed, the configured default is used.
    """
    try:
        objects = await gateway.list_objects(config.STORAGE_BUCKET, config.LOGO_PATH)
    except GatewayError as exc:
        logger.warning("Could not list stored logos: %s", exc)
        return branding(gateway)

    logos = [
        obj
        for obj in objects
        if obj.name.rsplit(".", 1)[0] == config.LOGO_PATH and _extension(obj.name) in _IMAGE_TYPES
    ]
    if not logos:
        return branding(gateway)
    latest = max(logos, key=lambda obj: obj.updated_at)
    return branding(gateway, _extension(latest.name))
