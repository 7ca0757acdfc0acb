"""In-process equivalents of the server functions in ``migrations/001_page_editor.sql``.

Every function receives a :class:`~pageeditor.services.gateway.LocalTransaction`
and runs all-or-nothing: the in-memory gateway rolls every table back when
one of them raises.
"""

from typing import Any, Dict, List

from pageeditor import config
from pageeditor.services.gateway import GatewayError, LocalTransaction

# Error code returned by the backend when an optimistic-concurrency check fails
STALE_VERSION_CODE = "40001"


def _current_version(tx: LocalTransaction, page_path: str) -> int:
    rows = tx.select(config.PAGE_VERSIONS_TABLE, {"page_path": page_path})
    return int(rows[0]["version"]) if rows else 0


def _bump_version(tx: LocalTransaction, page_path: str) -> int:
    version = _current_version(tx, page_path) + 1
    tx.upsert(
        config.PAGE_VERSIONS_TABLE,
        [{"page_path": page_path, "version": version}],
        on_conflict="page_path",
    )
    return version


def replace_page_blocks(tx: LocalTransaction, params: Dict[str, Any]) -> Dict[str, Any]:
    page_path = params["p_page_path"]
    base_version = params.get("p_base_version")

    current = _current_version(tx, page_path)
    if base_version is not None and int(base_version) != current:
        raise GatewayError(
            f"Page {page_path} changed since version {base_version} (now {current})",
            status_code=409,
            code=STALE_VERSION_CODE,
        )

    tx.delete(config.BLOCKS_TABLE, {"page_path": page_path})
    rows: List[Dict[str, Any]] = []
    for index, block in enumerate(params.get("p_blocks") or []):
        rows.append(
            {
                "id": block.get("id"),
                "page_path": page_path,
                "type": block["type"],
                "content": block.get("content") or {},
                "order_index": index,
            }
        )
    stored = tx.insert(config.BLOCKS_TABLE, rows)
    return {"version": _bump_version(tx, page_path), "blocks": stored}


def upsert_page_block(tx: LocalTransaction, params: Dict[str, Any]) -> Dict[str, Any]:
    block = params["p_block"]
    previous = tx.select(config.BLOCKS_TABLE, {"id": block["id"]}) if block.get("id") else []
    stored = tx.upsert(config.BLOCKS_TABLE, [block])[0]
    # a block moved to another page changes both pages
    if previous and previous[0]["page_path"] != stored["page_path"]:
        _bump_version(tx, previous[0]["page_path"])
    return {"version": _bump_version(tx, stored["page_path"]), "block": stored}


def delete_page_block(tx: LocalTransaction, params: Dict[str, Any]) -> Dict[str, Any]:
    removed = tx.delete(config.BLOCKS_TABLE, {"id": params["p_id"]})
    if not removed:
        return {"version": None, "page_path": None}
    page_path = removed[0]["page_path"]
    return {"version": _bump_version(tx, page_path), "page_path": page_path}


def delete_page_blocks(tx: LocalTransaction, params: Dict[str, Any]) -> Dict[str, Any]:
    page_path = params["p_page_path"]
    removed = tx.delete(config.BLOCKS_TABLE, {"page_path": page_path})
    return {"version": _bump_version(tx, page_path), "deleted": len(removed)}


def replace_content_records(tx: LocalTransaction, params: Dict[str, Any]) -> Dict[str, Any]:
    page = params["p_page"]
    tx.delete(config.CONTENT_RECORDS_TABLE, {"page": page})
    stored = tx.insert(config.CONTENT_RECORDS_TABLE, list(params.get("p_records") or []))
    return {"count": len(stored)}


LOCAL_FUNCTIONS = {
    "replace_page_blocks": replace_page_blocks,
    "upsert_page_block": upsert_page_block,
    "delete_page_block": delete_page_block,
    "delete_page_blocks": delete_page_blocks,
    "replace_content_records": replace_content_records,
}
