"""Remote data gateway: row API, server functions, object storage and change feed.

The hosted backend is consumed through a deliberately small surface:

* row verbs (``select`` / ``insert`` / ``upsert`` / ``delete``) filtered by
  column equality,
* ``rpc`` for server-side functions, used for every multi-row write that has
  to be all-or-nothing,
* bucket-scoped ``upload``, ``list_objects`` and ``public_url``,
* ``subscribe`` / ``unsubscribe`` on table changes filtered by one column.

:class:`RestGateway` speaks the backend's REST dialect over ``httpx`` and
follows its ``postgres_changes`` channels with the ``realtime`` client;
:class:`InMemoryGateway` keeps everything in process memory and is what the
service runs on when no backend URL is configured.
"""

import asyncio
import copy
import itertools
import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Set, Tuple
from urllib.parse import quote

import httpx
from realtime import AsyncRealtimeClient

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class GatewayError(Exception):
    """Transport, auth or query failure reported by the backend."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class ChangeEvent(NamedTuple):
    table: str
    event_type: str  # "INSERT" | "UPDATE" | "DELETE"
    new: Optional[Row]
    old: Optional[Row]

    def matches(self, column: str, value: Any) -> bool:
        """Return True when the old or new row has ``column == value``."""
        for row in (self.new, self.old):
            if row is not None and row.get(column) == value:
                return True
        return False


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


class Subscription(NamedTuple):
    id: int
    table: str
    column: str
    value: Any
    callback: ChangeCallback


class StoredObject(NamedTuple):
    name: str
    updated_at: str


class RealtimeHub:
    """Process-local fan-out of change events to subscribers."""

    def __init__(self) -> None:
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(self, table: str, column: str, value: Any, callback: ChangeCallback) -> Subscription:
        sub = Subscription(next(self._ids), table, column, value, callback)
        self._subscriptions[sub.id] = sub
        logger.debug("Realtime: subscribed #%d to %s where %s=%s", sub.id, table, column, value)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)

    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, events: List[ChangeEvent]) -> None:
        """Deliver *events* in order; a failing subscriber never blocks the others."""
        for event in events:
            for sub in list(self._subscriptions.values()):
                if sub.id not in self._subscriptions:
                    continue
                if sub.table != event.table or not event.matches(sub.column, sub.value):
                    continue
                try:
                    await sub.callback(event)
                except Exception:
                    logger.exception("Realtime subscriber #%d failed on %s event", sub.id, event.event_type)


class Gateway:
    """Interface shared by the REST and in-memory backends."""

    def __init__(self) -> None:
        self.realtime = RealtimeHub()

    async def select(self, table: str, eq: Optional[Row] = None, order: Optional[str] = None) -> List[Row]:
        raise NotImplementedError

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        raise NotImplementedError

    async def upsert(self, table: str, rows: List[Row], on_conflict: str = "id") -> List[Row]:
        raise NotImplementedError

    async def delete(self, table: str, eq: Row) -> List[Row]:
        raise NotImplementedError

    async def rpc(self, name: str, params: Row) -> Any:
        raise NotImplementedError

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> str:
        raise NotImplementedError

    async def list_objects(self, bucket: str, search: str = "") -> List[StoredObject]:
        """Return the bucket's top-level objects whose name contains *search*."""
        raise NotImplementedError

    def public_url(self, bucket: str, path: str) -> str:
        raise NotImplementedError

    def subscribe(self, table: str, column: str, value: Any, callback: ChangeCallback) -> Subscription:
        return self.realtime.subscribe(table, column, value, callback)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.realtime.unsubscribe(subscription)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_matches(row: Row, eq: Optional[Row]) -> bool:
    return all(row.get(column) == value for column, value in (eq or {}).items())


def _sort_key(column: str):
    def key(row: Row):
        value = row.get(column)
        return (value is None, value if value is not None else 0)

    return key


class LocalTransaction:
    """Synchronous view over the in-memory tables used by one write.

    Server functions registered on :class:`InMemoryGateway` receive one of
    these; every change is recorded as a :class:`ChangeEvent` that is only
    published once the whole function has succeeded.
    """

    def __init__(self, tables: Dict[str, List[Row]]) -> None:
        self._tables = tables
        self.events: List[ChangeEvent] = []

    def _table(self, name: str) -> List[Row]:
        return self._tables.setdefault(name, [])

    def select(self, table: str, eq: Optional[Row] = None, order: Optional[str] = None) -> List[Row]:
        rows = [copy.deepcopy(row) for row in self._table(table) if _row_matches(row, eq)]
        if order:
            rows.sort(key=_sort_key(order))
        return rows

    def insert(self, table: str, rows: List[Row]) -> List[Row]:
        stored: List[Row] = []
        for row in rows:
            new = copy.deepcopy(row)
            new.setdefault("id", None)
            if not new["id"]:
                new["id"] = str(uuid.uuid4())
            if any(existing.get("id") == new["id"] for existing in self._table(table)):
                raise GatewayError(
                    f"duplicate key value violates unique constraint on {table}.id",
                    status_code=409,
                    code="23505",
                )
            timestamp = _now()
            new.setdefault("created_at", timestamp)
            new["updated_at"] = timestamp
            self._table(table).append(new)
            self.events.append(ChangeEvent(table, "INSERT", copy.deepcopy(new), None))
            stored.append(copy.deepcopy(new))
        return stored

    def upsert(self, table: str, rows: List[Row], on_conflict: str = "id") -> List[Row]:
        keys = [key.strip() for key in on_conflict.split(",") if key.strip()]
        stored: List[Row] = []
        for row in rows:
            existing = None
            if all(row.get(key) for key in keys):
                existing = next(
                    (r for r in self._table(table) if all(r.get(key) == row.get(key) for key in keys)),
                    None,
                )
            if existing is None:
                stored.extend(self.insert(table, [row]))
                continue
            old = copy.deepcopy(existing)
            existing.update(copy.deepcopy(row))
            existing["updated_at"] = _now()
            self.events.append(ChangeEvent(table, "UPDATE", copy.deepcopy(existing), old))
            stored.append(copy.deepcopy(existing))
        return stored

    def delete(self, table: str, eq: Row) -> List[Row]:
        rows = self._table(table)
        removed = [row for row in rows if _row_matches(row, eq)]
        self._tables[table] = [row for row in rows if not _row_matches(row, eq)]
        for row in removed:
            self.events.append(ChangeEvent(table, "DELETE", None, copy.deepcopy(row)))
        return copy.deepcopy(removed)


LocalFunction = Callable[[LocalTransaction, Row], Any]


class InMemoryGateway(Gateway):
    """Process-local backend.

    Each write runs to completion without awaiting, so no other coroutine
    can observe a half-applied change.  Server functions additionally roll
    back to a snapshot of all tables when they raise.  Change events are
    published to this process's subscribers after each committed write.
    """

    def __init__(
        self,
        functions: Optional[Dict[str, LocalFunction]] = None,
        public_base_url: str = "http://localhost:54321",
    ) -> None:
        super().__init__()
        self._tables: Dict[str, List[Row]] = {}
        self._objects: Dict[Tuple[str, str], Tuple[bytes, str, str]] = {}
        self._functions: Dict[str, LocalFunction] = dict(functions or {})
        self.public_base_url = public_base_url.rstrip("/")

    def register_function(self, name: str, function: LocalFunction) -> None:
        self._functions[name] = function

    def reset(self) -> None:
        """Drop all rows and stored objects (subscriptions are kept)."""
        self._tables.clear()
        self._objects.clear()

    async def _write(self, operation: Callable[[LocalTransaction], Any]) -> Any:
        snapshot = copy.deepcopy(self._tables)
        tx = LocalTransaction(self._tables)
        try:
            result = operation(tx)
        except Exception:
            self._tables.clear()
            self._tables.update(snapshot)
            raise
        await self.realtime.publish(tx.events)
        return result

    async def select(self, table: str, eq: Optional[Row] = None, order: Optional[str] = None) -> List[Row]:
        return LocalTransaction(self._tables).select(table, eq, order)

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        return await self._write(lambda tx: tx.insert(table, rows))

    async def upsert(self, table: str, rows: List[Row], on_conflict: str = "id") -> List[Row]:
        return await self._write(lambda tx: tx.upsert(table, rows, on_conflict))

    async def delete(self, table: str, eq: Row) -> List[Row]:
        return await self._write(lambda tx: tx.delete(table, eq))

    async def rpc(self, name: str, params: Row) -> Any:
        function = self._functions.get(name)
        if function is None:
            raise GatewayError(f"Could not find the function {name}", status_code=404, code="PGRST202")
        return await self._write(lambda tx: function(tx, params))

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> str:
        key = (bucket, path)
        if key in self._objects and not upsert:
            raise GatewayError("The resource already exists", status_code=409, code="Duplicate")
        self._objects[key] = (bytes(data), content_type, _now())
        return path

    async def list_objects(self, bucket: str, search: str = "") -> List[StoredObject]:
        return [
            StoredObject(name, updated_at)
            for (object_bucket, name), (_, _, updated_at) in self._objects.items()
            if object_bucket == bucket and "/" not in name and search in name
        ]

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/storage/v1/object/public/{bucket}/{quote(path)}"


# ---------------------------------------------------------------------------
# REST backend
# ---------------------------------------------------------------------------

def _eq_params(eq: Optional[Row]) -> Dict[str, str]:
    return {column: f"eq.{value}" for column, value in (eq or {}).items()}


def change_from_payload(table: str, payload: Row) -> ChangeEvent:
    """Build a :class:`ChangeEvent` from a ``postgres_changes`` message payload."""
    data = payload.get("data") or payload
    event_type = (data.get("type") or data.get("eventType") or "UPDATE").upper()
    new = data.get("record") or data.get("new") or None
    old = data.get("old_record") or data.get("old") or None
    return ChangeEvent(data.get("table") or table, event_type, new, old)


ChannelKey = Tuple[str, str, str]


class RestGateway(Gateway):
    """Hosted backend reached over its REST endpoints.

    Subscriptions join one ``postgres_changes`` channel per
    ``(table, column, value)`` filter on the backend's realtime socket, so
    changes made by any client reach this process.  A channel is left when
    its last subscriber goes away.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 10) -> None:
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client: Optional[AsyncRealtimeClient] = None
        self._connecting: Optional[asyncio.Lock] = None
        self._channel_refs: Counter = Counter()
        self._joins: Dict[ChannelKey, "asyncio.Task[Any]"] = {}
        self._tasks: Set["asyncio.Task[Any]"] = set()

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Gateway: %s %s failed – %s", method, path, exc)
            raise GatewayError(f"Backend unreachable: {exc}") from exc

        if response.is_error:
            message = response.text
            code = None
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                message = payload.get("message") or payload.get("error") or message
                code = payload.get("code")
            logger.error("Gateway: %s %s returned HTTP %d – %s", method, path, response.status_code, message)
            raise GatewayError(message, status_code=response.status_code, code=code)
        return response

    async def select(self, table: str, eq: Optional[Row] = None, order: Optional[str] = None) -> List[Row]:
        params = {"select": "*", **_eq_params(eq)}
        if order:
            params["order"] = f"{order}.asc"
        response = await self._request("GET", f"/rest/v1/{table}", params=params, headers=self._headers())
        return response.json() or []

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=rows,
            headers=self._headers("return=representation"),
        )
        return response.json() or []

    async def upsert(self, table: str, rows: List[Row], on_conflict: str = "id") -> List[Row]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=rows,
            params={"on_conflict": on_conflict},
            headers=self._headers("resolution=merge-duplicates,return=representation"),
        )
        return response.json() or []

    async def delete(self, table: str, eq: Row) -> List[Row]:
        response = await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            params=_eq_params(eq),
            headers=self._headers("return=representation"),
        )
        return response.json() or []

    async def rpc(self, name: str, params: Row) -> Any:
        response = await self._request("POST", f"/rest/v1/rpc/{name}", json=params, headers=self._headers())
        return response.json() if response.content else None

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> str:
        headers = self._headers()
        headers["Content-Type"] = content_type
        headers["Cache-Control"] = "max-age=3600"
        headers["x-upsert"] = "true" if upsert else "false"
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(path)}",
            content=data,
            headers=headers,
        )
        return path

    async def list_objects(self, bucket: str, search: str = "") -> List[StoredObject]:
        response = await self._request(
            "POST",
            f"/storage/v1/object/list/{bucket}",
            json={"prefix": "", "search": search, "limit": 100},
            headers=self._headers(),
        )
        return [
            StoredObject(item["name"], item.get("updated_at") or "")
            for item in response.json() or []
            if item.get("name")
        ]

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    # -- realtime -----------------------------------------------------------

    def subscribe(self, table: str, column: str, value: Any, callback: ChangeCallback) -> Subscription:
        subscription = self.realtime.subscribe(table, column, value, callback)
        key = (table, column, str(value))
        self._channel_refs[key] += 1
        if self._channel_refs[key] == 1:
            self._joins[key] = self._spawn(self._join(key))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self.realtime.unsubscribe(subscription)
        key = (subscription.table, subscription.column, str(subscription.value))
        if self._channel_refs[key] <= 0:
            return
        self._channel_refs[key] -= 1
        if self._channel_refs[key] == 0:
            del self._channel_refs[key]
            join = self._joins.pop(key, None)
            if join is not None:
                self._spawn(self._leave(key, join))

    def _spawn(self, coro: Awaitable[Any]) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _realtime_client(self) -> AsyncRealtimeClient:
        if self._connecting is None:
            self._connecting = asyncio.Lock()
        async with self._connecting:
            if self._client is None:
                client = AsyncRealtimeClient(f"{self.base_url}/realtime/v1", self.api_key)
                await client.connect()
                self._client = client
                logger.info("Realtime: connected to %s", self.base_url)
        return self._client

    async def _join(self, key: ChannelKey) -> Any:
        table, column, value = key
        try:
            client = await self._realtime_client()
            channel = client.channel(f"{table}-{column}-{value}")

            def on_change(payload: Row) -> None:
                self._spawn(self.realtime.publish([change_from_payload(table, payload)]))

            channel.on_postgres_changes(
                "*",
                callback=on_change,
                table=table,
                schema="public",
                filter=f"{column}=eq.{value}",
            )
            await channel.subscribe()
        except Exception:
            logger.exception("Realtime: could not join %s where %s=%s", table, column, value)
            return None
        logger.debug("Realtime: joined %s where %s=%s", table, column, value)
        return channel

    async def _leave(self, key: ChannelKey, join: "asyncio.Task[Any]") -> None:
        channel = await join
        if channel is None:
            return
        try:
            await channel.unsubscribe()
        except Exception:
            logger.exception("Realtime: could not leave %s where %s=%s", *key)
