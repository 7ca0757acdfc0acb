"""Typed access to the ``blocks`` table, scoped by page path."""

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Union

from pydantic import ValidationError

from pageeditor import config
from pageeditor.models.block import BlockDraft, ContentBlock, normalize_properties, parse_json_bag
from pageeditor.services.gateway import Gateway, GatewayError
from pageeditor.services.procedures import STALE_VERSION_CODE

logger = logging.getLogger(__name__)

BlockLike = Union[ContentBlock, BlockDraft, Dict[str, Any]]


class StaleVersionError(Exception):
    """Raised when a page was changed by someone else since it was loaded."""

    def __init__(self, page_path: str, base_version: Optional[int], message: str = ""):
        super().__init__(message or f"Page {page_path} has changed since version {base_version}.")
        self.page_path = page_path
        self.base_version = base_version


class PageBlocks(NamedTuple):
    version: int
    blocks: List[ContentBlock]


def _block_payload(block: BlockLike) -> Dict[str, Any]:
    """Return the ``{id, type, content}`` payload stored for *block*."""
    if isinstance(block, (ContentBlock, BlockDraft)):
        return {"id": block.id, "type": block.type, "content": block.properties}
    block_type = block["type"]
    properties = block.get("properties", block.get("content"))
    return {
        "id": block.get("id"),
        "type": block_type,
        "content": normalize_properties(block_type, parse_json_bag(properties)),
    }


class BlockStore:
    def __init__(
        self,
        gateway: Gateway,
        table: str = config.BLOCKS_TABLE,
        versions_table: str = config.PAGE_VERSIONS_TABLE,
    ) -> None:
        self.gateway = gateway
        self.table = table
        self.versions_table = versions_table

    async def fetch_page_blocks(self, page_path: str) -> List[ContentBlock]:
        """Return the page's blocks in render order (empty list when it has none)."""
        rows = await self.gateway.select(self.table, eq={"page_path": page_path}, order="order_index")
        blocks = []
        for row in rows:
            try:
                blocks.append(ContentBlock.from_row(row))
            except (ValidationError, KeyError) as exc:
                logger.warning("Skipping unreadable block %s on %s: %s", row.get("id"), page_path, exc)
        return blocks

    async def page_version(self, page_path: str) -> int:
        rows = await self.gateway.select(self.versions_table, eq={"page_path": page_path})
        return int(rows[0]["version"]) if rows else 0

    async def fetch_page(self, page_path: str) -> PageBlocks:
        """Return the page's version together with its blocks.

        The version is read first, so a write landing between the two reads
        can only make the version look older than the blocks, never newer.
        """
        version = await self.page_version(page_path)
        blocks = await self.fetch_page_blocks(page_path)
        return PageBlocks(version, blocks)

    async def save_page_blocks(
        self,
        page_path: str,
        blocks: Sequence[BlockLike],
        base_version: Optional[int] = None,
    ) -> PageBlocks:
        """Replace the page's whole block list in one server-side transaction.

        When *base_version* is given and the page has been written since,
        nothing is changed and :class:`StaleVersionError` is raised.
        """
        payload = [_block_payload(block) for block in blocks]
        try:
            result = await self.gateway.rpc(
                "replace_page_blocks",
                {"p_page_path": page_path, "p_blocks": payload, "p_base_version": base_version},
            )
        except GatewayError as exc:
            if exc.code == STALE_VERSION_CODE:
                raise StaleVersionError(page_path, base_version, exc.message) from exc
            raise

        saved = [ContentBlock.from_row(row) for row in result.get("blocks") or []]
        saved.sort(key=lambda block: block.order_index)
        logger.info(
            "Saved %d blocks for %s",
            len(saved),
            page_path,
            extra={"page_path": page_path, "version": result["version"]},
        )
        return PageBlocks(int(result["version"]), saved)

    async def save_single_block(self, block: ContentBlock) -> ContentBlock:
        """Upsert one block by id without touching its siblings."""
        if not block.id or not block.page_path:
            raise ValueError("Block ID and page path are required.")
        result = await self.gateway.rpc(
            "upsert_page_block",
            {"p_block": block.to_row()},
        )
        return ContentBlock.from_row(result["block"])

    async def delete_block(self, block_id: str) -> Optional[str]:
        """Delete one block; return its page path, or None when it did not exist."""
        rows = await self.gateway.select(self.table, eq={"id": block_id})
        if not rows:
            return None
        page_path = rows[0]["page_path"]
        result = await self.gateway.rpc(
            "delete_page_block",
            {"p_id": block_id},
        )
        if result.get("page_path"):
            logger.info("Deleted block %s from %s", block_id, page_path)
        return result.get("page_path")

    async def delete_page_blocks(self, page_path: str) -> int:
        result = await self.gateway.rpc(
            "delete_page_blocks",
            {"p_page_path": page_path},
        )
        return int(result.get("deleted") or 0)
