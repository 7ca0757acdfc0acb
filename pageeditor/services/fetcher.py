from urllib.parse import urljoin, urlparse

import httpx

from pageeditor import config

MAX_CONTENT_SIZE = 10 * 1024 * 1024  # 10 MB
TIMEOUT = 10  # seconds
MAX_REDIRECTS = 10
ALLOWED_SCHEMES = {"http", "https"}


def page_url_for(page_path: str) -> str:
    """Return the absolute URL of *page_path* on the clinic site."""
    return urljoin(config.SITE_BASE_URL.rstrip("/") + "/", page_path.lstrip("/"))


def _validate_url(url: str) -> None:
    """Raise ValueError unless *url* is an http(s) URL on the configured site.

    Previews and snapshots only ever load pages of the clinic site itself
    (same origin as ``SITE_BASE_URL``).
    """
    parsed = urlparse(url)

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise ValueError(f"Scheme '{parsed.scheme}' is not allowed. Use http or https.")

    if not parsed.hostname:
        raise ValueError("URL must have a valid hostname.")

    site = urlparse(config.SITE_BASE_URL)
    if (parsed.scheme, parsed.netloc) != (site.scheme, site.netloc):
        raise ValueError(f"URL {url} is outside the configured site {config.SITE_BASE_URL}.")


async def fetch_url(url: str) -> str:
    """Fetch *url* and return the response body as a string.

    Redirects are followed manually so that every redirect destination is
    checked against the site origin before the next request is made.

    Raises:
        ValueError: if the URL fails scheme / origin validation.
        httpx.HTTPError: on network or HTTP errors.
        RuntimeError: if the response body exceeds MAX_CONTENT_SIZE.
    """
    _validate_url(url)

    current_url = url
    async with httpx.AsyncClient(follow_redirects=False, timeout=TIMEOUT) as client:
        for _ in range(MAX_REDIRECTS + 1):
            async with client.stream("GET", current_url) as response:
                if response.is_redirect:
                    location = response.headers.get("location", "")
                    next_url = urljoin(current_url, location)
                    _validate_url(next_url)
                    current_url = next_url
                    continue

                response.raise_for_status()

                content_length = response.headers.get("content-length")
                if content_length and int(content_length) > MAX_CONTENT_SIZE:
                    raise RuntimeError("Response body exceeds the maximum allowed size.")

                chunks = []
                total = 0
                async for chunk in response.aiter_bytes():
                    total += len(chunk)
                    if total > MAX_CONTENT_SIZE:
                        raise RuntimeError("Response body exceeds the maximum allowed size.")
                    chunks.append(chunk)

                return b"".join(chunks).decode(errors="replace")

    raise RuntimeError("Too many redirects.")
