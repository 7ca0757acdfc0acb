"""Visibility rules applied to page snapshots before content is extracted.

A browser snapshot carries ``data-pe-visible`` / ``data-pe-loaded``
annotations computed from the live layout; those always win.  Plain HTTP
snapshots have no layout, so visibility is judged from inline styles and
attributes instead.
"""

import re

from bs4 import Tag

# Styles that hide an element together with its whole subtree
_SUBTREE_HIDDEN_RE = re.compile(
    r"(display\s*:\s*none|visibility\s*:\s*hidden)", re.IGNORECASE
)

# Fully transparent element; its whole subtree is painted transparent too
_TRANSPARENT_RE = re.compile(r"(?:^|;)\s*opacity\s*:\s*0*(?:\.0*)?\s*(?:;|$)", re.IGNORECASE)

# Explicit zero width or height in an inline style
_ZERO_BOX_STYLE_RE = re.compile(r"(?:^|;)\s*(?:width|height)\s*:\s*0(?:px)?\s*(?:;|$)", re.IGNORECASE)


def _hides_subtree(tag: Tag) -> bool:
    if tag.has_attr("hidden"):
        return True
    style = tag.get("style") or ""
    return bool(style and (_SUBTREE_HIDDEN_RE.search(style) or _TRANSPARENT_RE.search(style)))


def _has_zero_box(tag: Tag) -> bool:
    for attr in ("width", "height"):
        value = tag.get(attr)
        if value is not None and str(value).strip() in ("0", "0px"):
            return True
    style = tag.get("style") or ""
    return bool(style and _ZERO_BOX_STYLE_RE.search(style))


def is_visible(tag: Tag) -> bool:
    """Return True when *tag* would be rendered with a non-empty box."""
    annotated = tag.get("data-pe-visible")
    if annotated is not None:
        return annotated == "true"

    if _has_zero_box(tag):
        return False

    node = tag
    while isinstance(node, Tag) and node.name != "[document]":
        if _hides_subtree(node):
            return False
        node = node.parent
    return True


def is_loaded_image(img: Tag) -> bool:
    """Return True when *img* finished loading with a non-zero natural width."""
    if not img.get("src"):
        return False
    annotated = img.get("data-pe-loaded")
    if annotated is not None:
        return annotated == "true"
    return True
