"""Snapshot a rendered site page into ``content_blocks`` records."""

import asyncio
import logging
from typing import Dict, List, NamedTuple, Optional, Sequence
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError

from pageeditor import config
from pageeditor.models.extract_request import ExtractOptions
from pageeditor.models.extract_response import ContentRecord
from pageeditor.services.browser_fetcher import render_page
from pageeditor.services.fetcher import fetch_url, page_url_for
from pageeditor.services.gateway import Gateway, GatewayError
from pageeditor.services.visibility import is_loaded_image, is_visible

logger = logging.getLogger(__name__)

_HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]

# Links inside these containers are site chrome, not page content
_CHROME_TAGS = ["nav", "header", "footer"]

_SECTION_BY_TYPE = {
    "heading": "heading",
    "paragraph": "text",
    "list": "list",
    "image": "image",
    "link": "link",
}

_SPECIALTIES = ("eyecare", "gynecology")


class ParsedItem(NamedTuple):
    type: str
    content: str
    level: Optional[int] = None
    url: Optional[str] = None


def _text(tag) -> str:
    return " ".join(tag.get_text(" ").split())


def _headings(soup: BeautifulSoup) -> List[ParsedItem]:
    items = []
    for heading in soup.find_all(_HEADING_TAGS):
        text = _text(heading)
        if text and is_visible(heading):
            items.append(ParsedItem("heading", text, level=int(heading.name[1])))
    return items


def _paragraphs(soup: BeautifulSoup) -> List[ParsedItem]:
    items = []
    for paragraph in soup.find_all("p"):
        text = _text(paragraph)
        if text and is_visible(paragraph):
            items.append(ParsedItem("paragraph", text))
    return items


def _lists(soup: BeautifulSoup) -> List[ParsedItem]:
    items = []
    for list_tag in soup.find_all(["ul", "ol"]):
        if not is_visible(list_tag):
            continue
        entries = [text for text in (_text(li) for li in list_tag.find_all("li")) if text]
        if entries:
            items.append(ParsedItem("list", "\n".join(entries)))
    return items


def _links(soup: BeautifulSoup, page_url: str) -> List[ParsedItem]:
    items = []
    for link in soup.find_all("a"):
        if link.find_parent(_CHROME_TAGS) is not None:
            continue
        text = _text(link)
        if not text or not is_visible(link):
            continue
        href = str(link.get("href") or "").strip()
        items.append(ParsedItem("link", text, url=urljoin(page_url, href) if href else ""))
    return items


def _images(soup: BeautifulSoup, page_url: str) -> List[ParsedItem]:
    items = []
    for img in soup.find_all("img"):
        if is_visible(img) and is_loaded_image(img):
            alt = str(img.get("alt") or "").strip()
            items.append(ParsedItem("image", alt, url=urljoin(page_url, str(img["src"]).strip())))
    return items


def parse_page(html: str, page_url: str, options: ExtractOptions) -> List[ParsedItem]:
    """Return the visible content of *html* in extraction order.

    Categories come one after another (headings, paragraphs, lists, links,
    images), each in document order.
    """
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(["script", "style", "noscript", "template"]):
        tag.decompose()

    items: List[ParsedItem] = []
    if options.include_headings:
        items.extend(_headings(soup))
    if options.include_paragraphs:
        items.extend(_paragraphs(soup))
    if options.include_lists:
        items.extend(_lists(soup))
    if options.include_links:
        items.extend(_links(soup, page_url))
    if options.include_images:
        items.extend(_images(soup, page_url))
    return items


def specialty_for(page_path: str) -> str:
    segments = [segment for segment in page_path.split("/") if segment]
    if segments and segments[0] in _SPECIALTIES:
        return segments[0]
    return "general"


def to_records(items: Sequence[ParsedItem], page_path: str) -> List[ContentRecord]:
    specialty = specialty_for(page_path)
    records = []
    for index, item in enumerate(items):
        if item.type == "heading":
            title = f"Heading Level {item.level}"
        elif item.type == "image":
            title = item.content
        else:
            title = None
        records.append(
            ContentRecord(
                page=page_path,
                section=_SECTION_BY_TYPE.get(item.type, "content"),
                name=f"{item.type}_{index}",
                title=title,
                content=item.content,
                image_url=item.url,
                specialty=specialty,
                order_index=index,
            )
        )
    return records


def collect_records(html: str, page_path: str, options: ExtractOptions, page_url: str = "") -> List[ContentRecord]:
    """Scan a snapshot of *page_path* and return the records to store."""
    return to_records(parse_page(html, page_url or page_url_for(page_path), options), page_path)


def is_excluded(page_path: str, exclude_paths: Sequence[str]) -> bool:
    return any(fragment and fragment in page_path for fragment in exclude_paths)


async def _snapshot(page_url: str, options: ExtractOptions) -> str:
    if options.render_mode == "browser":
        return await render_page(page_url, wait_ms=options.wait_time)
    if options.wait_time > 0:
        await asyncio.sleep(options.wait_time / 1000)
    return await fetch_url(page_url)


async def extract_current_page(
    page_path: str,
    gateway: Gateway,
    options: Optional[ExtractOptions] = None,
) -> bool:
    """Replace the stored content records of *page_path* with a fresh snapshot.

    Returns False, without touching the store, when the path is excluded.
    Any failure is logged and reported as False; the replace runs as one
    server-side transaction, so a failure leaves the previous records intact.
    An empty snapshot clears the page's records and also reports False.
    """
    options = options or ExtractOptions()

    if is_excluded(page_path, options.exclude_paths):
        logger.info("Skipping content extraction for excluded page: %s", page_path)
        return False

    page_url = page_url_for(page_path)
    try:
        html = await _snapshot(page_url, options)
        records = collect_records(html, page_path, options, page_url)
        await gateway.rpc(
            "replace_content_records",
            {
                "p_page": page_path,
                "p_records": [record.model_dump(exclude={"id"}) for record in records],
            },
        )
    except ValueError as exc:
        logger.warning("Extraction refused for %s – %s", page_path, exc)
        return False
    except (GatewayError, httpx.HTTPError, PlaywrightError, RuntimeError) as exc:
        logger.error("Error extracting content from %s: %s", page_path, exc)
        return False

    if not records:
        logger.info("No visible content found on %s", page_path)
        return False

    logger.info(
        "Stored %d content records for %s",
        len(records),
        page_path,
        extra={"page_path": page_path, "render_mode": options.render_mode},
    )
    return True


async def extract_all_pages(
    page_paths: Sequence[str],
    gateway: Gateway,
    options: Optional[ExtractOptions] = None,
) -> Dict[str, bool]:
    """Extract every page in *page_paths* one after another."""
    results: Dict[str, bool] = {}
    for page_path in page_paths:
        if page_path in results:
            continue
        results[page_path] = await extract_current_page(page_path, gateway, options)
    return results


async def fetch_records(page_path: str, gateway: Gateway) -> List[ContentRecord]:
    rows = await gateway.select(config.CONTENT_RECORDS_TABLE, eq={"page": page_path}, order="order_index")
    return [ContentRecord.model_validate(row) for row in rows]
