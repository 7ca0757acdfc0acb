"""Render a page's block list to the HTML shown in the preview frame."""

from html import escape
from typing import Sequence

from pageeditor.models.block import ContentBlock


def render_block(block: ContentBlock) -> str:
    props = block.properties
    block_id = f' data-block-id="{escape(block.id)}"' if block.id else ""

    if block.type == "heading":
        tag = f"h{props['level']}"
        return f'<{tag} class="pe-heading"{block_id}>{escape(props["text"])}</{tag}>'
    if block.type == "paragraph":
        # Line breaks typed in the editor survive as <br>
        text = "<br>".join(escape(line) for line in props["text"].split("\n"))
        return f'<p class="pe-paragraph"{block_id}>{text}</p>'
    if block.type == "image":
        return f'<img class="pe-image" src="{escape(props["src"])}" alt="{escape(props["alt"])}"{block_id}>'
    if block.type == "button":
        href = f' href="{escape(props["url"])}"' if props["url"] else ""
        variant = escape(props["variant"])
        return f'<a class="pe-button pe-button-{variant}"{href}{block_id}>{escape(props["text"])}</a>'
    return ""


def render_page(page_path: str, blocks: Sequence[ContentBlock]) -> str:
    """Return a complete HTML document for *blocks* in order."""
    body = "\n".join(
        f"    {html}" for html in (render_block(block) for block in sorted(blocks, key=lambda b: b.order_index)) if html
    )
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Preview: {escape(page_path)}</title>
</head>
<body>
  <main data-page-path="{escape(page_path)}">
{body}
  </main>
</body>
</html>"""
