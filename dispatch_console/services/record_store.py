"""Record store access (placed orders, dispatch rows and lookup tables).

Queries are equality filters with optional ordering. Change notifications are
delivered per table + filter; subscribers re-fetch rather than patch.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set
from uuid import uuid4

from supabase import AsyncClient, acreate_client

from dispatch_console.core.config import get_settings

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
ChangeCallback = Callable[[Dict[str, Any]], Awaitable[None]]


class RecordStoreError(RuntimeError):
    pass


class Subscription(ABC):
    @abstractmethod
    async def unsubscribe(self) -> None:
        ...


class RecordStore(ABC):
    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        columns: str = "*",
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        ...

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        ...

    @abstractmethod
    async def update(self, table: str, values: Row, filters: Mapping[str, Any]) -> List[Row]:
        ...

    @abstractmethod
    async def subscribe(self, table: str, filters: Mapping[str, Any], callback: ChangeCallback) -> Subscription:
        ...

    async def select_one(self, table: str, filters: Mapping[str, Any], *, columns: str = "*") -> Optional[Row]:
        rows = await self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None


# =============================================================================
# In-memory store (local development and tests)
# =============================================================================

class _InMemorySubscription(Subscription):
    def __init__(self, store: "InMemoryRecordStore", key: str) -> None:
        self._store = store
        self._key = key

    async def unsubscribe(self) -> None:
        self._store._subscribers.pop(self._key, None)


class InMemoryRecordStore(RecordStore):
    def __init__(self, tables: Optional[Dict[str, List[Row]]] = None) -> None:
        self._tables: Dict[str, List[Row]] = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self._subscribers: Dict[str, tuple] = {}

    @staticmethod
    def _matches(row: Row, filters: Optional[Mapping[str, Any]]) -> bool:
        if not filters:
            return True
        return all(str(row.get(key)) == str(value) for key, value in filters.items())

    def rows(self, table: str) -> List[Row]:
        return self._tables.setdefault(table, [])

    @property
    def subscription_count(self) -> int:
        return len(self._subscribers)

    async def select(self, table, filters=None, *, columns="*", order_by=None, desc=False, limit=None):
        rows = [deepcopy(row) for row in self.rows(table) if self._matches(row, filters)]
        if order_by:
            rows.sort(key=lambda row: (row.get(order_by) is None, str(row.get(order_by) or "")), reverse=desc)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def insert(self, table: str, row: Row) -> Row:
        stored = dict(row)
        self.rows(table).append(stored)
        await self._notify(table, "INSERT", stored)
        return deepcopy(stored)

    async def update(self, table: str, values: Row, filters: Mapping[str, Any]) -> List[Row]:
        updated: List[Row] = []
        for row in self.rows(table):
            if self._matches(row, filters):
                row.update(values)
                updated.append(deepcopy(row))
        for row in updated:
            await self._notify(table, "UPDATE", row)
        return updated

    async def subscribe(self, table, filters, callback):
        key = uuid4().hex
        self._subscribers[key] = (table, dict(filters), callback)
        return _InMemorySubscription(self, key)

    async def _notify(self, table: str, event_type: str, row: Row) -> None:
        for sub_table, sub_filters, callback in list(self._subscribers.values()):
            if sub_table != table or not self._matches(row, sub_filters):
                continue
            await callback({"table": table, "eventType": event_type, "new": deepcopy(row)})


# =============================================================================
# Supabase store
# =============================================================================

class _SupabaseSubscription(Subscription):
    def __init__(self, client: AsyncClient, channel: Any) -> None:
        self._client = client
        self._channel = channel

    async def unsubscribe(self) -> None:
        try:
            await self._client.remove_channel(self._channel)
        except Exception as e:
            logger.warning(f"Failed to remove realtime channel: {e}")


class SupabaseRecordStore(RecordStore):
    """Supabase-backed store (async client; realtime postgres_changes for notifications)."""

    def __init__(self, client: AsyncClient, *, schema: str = "public") -> None:
        self.client = client
        self.schema = schema
        self._pending: Set[asyncio.Task] = set()

    async def select(self, table, filters=None, *, columns="*", order_by=None, desc=False, limit=None):
        query = self.client.table(table).select(columns)
        for key, value in (filters or {}).items():
            query = query.eq(key, value)
        if order_by:
            query = query.order(order_by, desc=desc)
        if limit is not None:
            query = query.limit(limit)
        try:
            response = await query.execute()
        except Exception as e:
            raise RecordStoreError(f"select {table} failed: {e}") from e
        return response.data or []

    async def insert(self, table: str, row: Row) -> Row:
        try:
            response = await self.client.table(table).insert(row).execute()
        except Exception as e:
            raise RecordStoreError(f"insert {table} failed: {e}") from e
        if not response.data:
            raise RecordStoreError(f"insert {table} returned no rows")
        return response.data[0]

    async def update(self, table: str, values: Row, filters: Mapping[str, Any]) -> List[Row]:
        if not filters:
            raise RecordStoreError("update without filters is not allowed")
        query = self.client.table(table).update(values)
        for key, value in filters.items():
            query = query.eq(key, value)
        try:
            response = await query.execute()
        except Exception as e:
            raise RecordStoreError(f"update {table} failed: {e}") from e
        return response.data or []

    async def subscribe(self, table, filters, callback):
        # Realtime accepts a single column filter; extra keys are checked client-side.
        items = list(filters.items())
        realtime_filter = f"{items[0][0]}=eq.{items[0][1]}" if items else None
        extra = dict(items[1:])

        def _on_change(payload: Dict[str, Any]) -> None:
            record = (payload.get("data") or {}).get("record") or payload.get("new") or {}
            if extra and not InMemoryRecordStore._matches(record, extra):
                return
            self._dispatch_change(callback, {"table": table, "new": record})

        channel = self.client.channel(f"{table}-{uuid4().hex[:8]}")
        channel.on_postgres_changes(
            "*",
            schema=self.schema,
            table=table,
            filter=realtime_filter,
            callback=_on_change,
        )
        await channel.subscribe()
        logger.info(f"Subscribed to {table} changes (filter={realtime_filter})")
        return _SupabaseSubscription(self.client, channel)

    def _dispatch_change(self, callback: ChangeCallback, change: Dict[str, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(callback(change))
        self._pending.add(task)
        task.add_done_callback(self._on_change_handled)
        return task

    def _on_change_handled(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Change callback failed: {exc}")


_store_instance: Optional[RecordStore] = None


async def get_record_store() -> RecordStore:
    global _store_instance
    if _store_instance:
        return _store_instance

    settings = get_settings()
    if settings.supabase_url and settings.supabase_service_role_key:
        client = await acreate_client(settings.supabase_url, settings.supabase_service_role_key)
        _store_instance = SupabaseRecordStore(client)
    else:
        logger.warning("Supabase credentials not configured, using in-memory record store")
        _store_instance = InMemoryRecordStore()
    return _store_instance
