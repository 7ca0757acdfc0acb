"""Per-element content editing and migration of the older content tables.

The element editor stores one ``website_content`` row per clicked element,
keyed by a selector path; it is independent of the block editor and never
reconciled with it.  :func:`import_legacy_content` is the one-way bridge:
it turns a page's extracted ``content_blocks`` records (or, when there are
none, its ``website_content`` rows) into canonical blocks.
"""

import logging
from typing import Any, Dict, Iterable, Optional, Sequence

from pageeditor import config
from pageeditor.models.block import BlockDraft, parse_json_bag
from pageeditor.models.legacy import ElementClick, ElementNode, LegacyContentItem
from pageeditor.services.block_store import BlockStore, PageBlocks
from pageeditor.services.gateway import Gateway

logger = logging.getLogger(__name__)

# Computed styles captured for a clicked element
STYLE_KEYS = ("color", "backgroundColor", "fontSize", "fontWeight", "padding", "margin")

# Elements the element editor makes clickable
EDITABLE_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6", "p", "img", "a")


def _node_selector(tag: str, element_id: Optional[str], classes: Iterable[str]) -> str:
    selector = tag.lower()
    if element_id:
        return f"{selector}#{element_id}"
    classes = [cls for cls in classes if cls]
    if classes:
        selector += "." + ".".join(classes)
    return selector


def selector_from_path(path: Sequence[ElementNode]) -> str:
    """Join a clicked-element-first path into ``body > main > h1.title`` form."""
    return " > ".join(_node_selector(node.tag, node.id, node.classes) for node in reversed(path))


def element_properties(tag: str, attributes: Dict[str, str]) -> Dict[str, Any]:
    tag = tag.lower()
    if tag == "img":
        return {"src": attributes.get("src"), "alt": attributes.get("alt")}
    if tag == "a":
        return {"href": attributes.get("href")}
    return {}


def captured_styles(computed_styles: Dict[str, str]) -> Dict[str, str]:
    return {key: computed_styles[key] for key in STYLE_KEYS if key in computed_styles}


async def record_element_click(click: ElementClick, gateway: Gateway) -> LegacyContentItem:
    """Upsert the ``website_content`` row for the clicked element."""
    element = click.path[0]
    tag = element.tag.lower()
    if tag not in EDITABLE_TAGS:
        raise ValueError(f"<{tag}> elements are not editable.")

    row = {
        "page_path": click.page_path,
        "selector": selector_from_path(click.path),
        "element_type": tag,
        "content": click.text or click.attributes.get("src") or "",
        "styles": captured_styles(click.computed_styles),
        "properties": element_properties(tag, click.attributes),
    }
    stored = await gateway.upsert(config.WEBSITE_CONTENT_TABLE, [row], on_conflict="page_path,selector")
    logger.info("Recorded element edit on %s: %s", click.page_path, row["selector"])
    return LegacyContentItem.model_validate(stored[0])


async def fetch_page_content(page_path: str, gateway: Gateway) -> Dict[str, LegacyContentItem]:
    """Return the page's element edits keyed by selector."""
    rows = await gateway.select(config.WEBSITE_CONTENT_TABLE, eq={"page_path": page_path})
    return {row["selector"]: LegacyContentItem.model_validate(row) for row in rows}


# ---------------------------------------------------------------------------
# Migration into canonical blocks
# ---------------------------------------------------------------------------

def _heading_level(title: Optional[str], default: int = 2) -> int:
    if title:
        digits = "".join(ch for ch in title if ch.isdigit())
        if digits and 1 <= int(digits) <= 6:
            return int(digits)
    return default


def infer_record_type(record: Dict[str, Any]) -> str:
    """Classify a ``content_blocks`` record that may lack a reliable section."""
    section = (record.get("section") or "").lower()
    name = (record.get("name") or "").lower()
    metadata = parse_json_bag(record.get("metadata"))

    if section == "heading" or "heading" in name:
        return "heading"
    if section in ("link", "button") or "link" in name or "button" in name:
        return "button"
    if section == "image" or "image" in name:
        return "image"
    if section == "list" or "list" in name:
        return "list"
    if record.get("image_url"):
        return "image"
    if metadata.get("url"):
        return "button"
    return "paragraph"


def record_to_block(record: Dict[str, Any]) -> BlockDraft:
    kind = infer_record_type(record)
    content = record.get("content") or ""
    metadata = parse_json_bag(record.get("metadata"))

    if kind == "heading":
        return BlockDraft(type="heading", properties={"text": content, "level": _heading_level(record.get("title"))})
    if kind == "image":
        alt = content or record.get("title") or ""
        return BlockDraft(type="image", properties={"src": record.get("image_url") or "", "alt": alt})
    if kind == "button":
        url = record.get("image_url") or metadata.get("url") or ""
        return BlockDraft(type="button", properties={"text": content, "url": url})
    if kind == "list":
        # Older editors stored list items pipe-delimited
        lines = content.split("|") if "\n" not in content else content.split("\n")
        return BlockDraft(type="paragraph", properties={"text": "\n".join(line.strip() for line in lines)})
    return BlockDraft(type="paragraph", properties={"text": content})


def item_to_block(item: LegacyContentItem) -> BlockDraft:
    tag = item.element_type.lower()
    content = item.content or ""
    if tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
        return BlockDraft(type="heading", properties={"text": content, "level": int(tag[1])})
    if tag == "img":
        src = item.properties.get("src") or item.image_url or content
        return BlockDraft(type="image", properties={"src": src, "alt": item.properties.get("alt") or ""})
    if tag == "a":
        return BlockDraft(type="button", properties={"text": content, "url": item.properties.get("href") or ""})
    return BlockDraft(type="paragraph", properties={"text": content})


async def import_legacy_content(
    page_path: str,
    gateway: Gateway,
    store: BlockStore,
    base_version: Optional[int] = None,
) -> PageBlocks:
    """Replace the page's blocks with its converted legacy content.

    Raises ValueError when the page has no legacy content at all.
    """
    records = await gateway.select(config.CONTENT_RECORDS_TABLE, eq={"page": page_path}, order="order_index")
    if records:
        drafts = [record_to_block(record) for record in records]
        source = config.CONTENT_RECORDS_TABLE
    else:
        rows = await gateway.select(config.WEBSITE_CONTENT_TABLE, eq={"page_path": page_path}, order="order_index")
        drafts = [item_to_block(LegacyContentItem.model_validate(row)) for row in rows]
        source = config.WEBSITE_CONTENT_TABLE

    if not drafts:
        raise ValueError(f"No legacy content stored for {page_path}.")

    saved = await store.save_page_blocks(page_path, drafts, base_version=base_version)
    logger.info("Imported %d blocks for %s from %s", len(drafts), page_path, source)
    return saved
