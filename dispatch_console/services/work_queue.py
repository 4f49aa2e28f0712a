"""
Work queue aggregation

Merges the three live sources of agent work into one ordered queue:
incoming calls (real-time events), placed app orders and scheduled dispatch
rows (record store, re-fetched on every change notification). Scheduled
orders only surface inside the visibility window, re-evaluated by an interval
job. Fetch failures leave an empty slice and are retried on the next tick.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4
from zoneinfo import ZoneInfo

from dispatch_console.core.config import Settings, get_settings
from dispatch_console.models.dispatch import OrderStatus
from dispatch_console.models.queue import IncomingCall, PlacedOrder, QueueCounts, ScheduledOrder, WorkQueueSnapshot
from dispatch_console.services.realtime import EventSource, get_event_source
from dispatch_console.services.record_store import RecordStore, Row, Subscription, get_record_store
from dispatch_console.services.schedule_time import is_visible, try_parse_scheduled_time
from dispatch_console.services.scheduler_service import SchedulerService, get_scheduler_service

logger = logging.getLogger(__name__)

UNKNOWN_CUSTOMER = "Unknown Customer"
UNKNOWN_PHONE = "N/A"
NO_ADDRESS = "No address provided"
ADDRESS_NOT_FOUND = "Address not found"

Clock = Callable[[], datetime]


def local_clock(tz_name: str) -> Clock:
    """Naive local wall-clock time; scheduled times carry no zone."""
    zone = ZoneInfo(tz_name)

    def _now() -> datetime:
        return datetime.now(zone).replace(tzinfo=None)

    return _now


class WorkQueueAggregator:
    def __init__(
        self,
        agent_id: str,
        *,
        store: RecordStore,
        events: EventSource,
        scheduler: SchedulerService,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.agent_id = agent_id
        self.store = store
        self.events = events
        self.scheduler = scheduler
        self.settings = settings or get_settings()
        self.clock = clock or local_clock(self.settings.timezone)

        self._calls: Dict[str, IncomingCall] = {}
        self._placed: List[PlacedOrder] = []
        self._scheduled_rows: List[ScheduledOrder] = []
        self._scheduled: List[ScheduledOrder] = []
        self._placed_failed = False
        self._scheduled_failed = False
        # Bumped when a refresh starts; a finished fetch is applied only if still current.
        self._placed_generation = 0
        self._scheduled_generation = 0
        self._subscriptions: List[Subscription] = []
        self._detach_listener: Optional[Callable[[], None]] = None
        self._refreshed_at: Optional[datetime] = None
        self._running = False

    @property
    def job_id(self) -> str:
        return f"work-queue-{self.agent_id}"

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        settings = self.settings
        agent_filter = {"admin_id": self.agent_id}

        await self.refresh_placed()
        await self.refresh_scheduled()

        self._subscriptions.append(
            await self.store.subscribe(settings.table_placed_orders, agent_filter, self._on_placed_change)
        )
        self._subscriptions.append(
            await self.store.subscribe(settings.table_dispatch, agent_filter, self._on_dispatch_change)
        )
        self._detach_listener = self.events.on(settings.realtime_incoming_call_event, self._on_incoming_call)

        if self.scheduler.is_running:
            self.scheduler.add_interval_job(self.job_id, self.recheck, settings.scheduled_recheck_seconds)
        else:
            logger.warning(f"Scheduler not running, visibility re-check disabled for agent {self.agent_id}")
        logger.info(f"Work queue started for agent {self.agent_id}")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for subscription in self._subscriptions:
            await subscription.unsubscribe()
        self._subscriptions.clear()
        if self._detach_listener is not None:
            self._detach_listener()
            self._detach_listener = None
        self.scheduler.remove_job(self.job_id)
        logger.info(f"Work queue stopped for agent {self.agent_id}")

    # =========================================================================
    # Queue view
    # =========================================================================

    def snapshot(self) -> WorkQueueSnapshot:
        calls = sorted(self._calls.values(), key=lambda call: call.received_at)
        items = []
        seen = set()
        for item in [*calls, *self._placed, *self._scheduled]:
            if item.identity in seen:
                continue
            seen.add(item.identity)
            items.append(item)
        counts = Counter(item.kind for item in items)
        return WorkQueueSnapshot(
            agent_id=self.agent_id,
            items=items,
            total=len(items),
            counts=QueueCounts(
                calls=counts["incoming_call"],
                placed=counts["placed_order"],
                scheduled=counts["scheduled_order"],
            ),
            refreshed_at=self._refreshed_at,
        )

    def get_call(self, call_id: str) -> Optional[IncomingCall]:
        return self._calls.get(call_id)

    def take_call(self, call_id: str) -> Optional[IncomingCall]:
        """Remove a call from the queue (accepted or rejected)."""
        return self._calls.pop(call_id, None)

    def get_placed(self, order_id: str) -> Optional[PlacedOrder]:
        return next((order for order in self._placed if order.order_id == order_id), None)

    def get_scheduled(self, order_id: str) -> Optional[ScheduledOrder]:
        return next((order for order in self._scheduled if order.order_id == order_id), None)

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh_placed(self) -> None:
        self._placed_generation += 1
        generation = self._placed_generation
        try:
            rows = await self.store.select(
                self.settings.table_placed_orders,
                {"status": OrderStatus.PLACED.value, "admin_id": self.agent_id},
                order_by="created_at",
            )
            placed = [await self._placed_from_row(row) for row in rows]
        except Exception as e:
            if generation != self._placed_generation:
                return
            logger.error(f"Placed orders fetch failed for agent {self.agent_id}: {e}")
            self._placed = []
            self._placed_failed = True
            return
        if generation != self._placed_generation:
            logger.debug(f"Dropping superseded placed orders fetch for agent {self.agent_id}")
            return
        self._placed = placed
        self._placed_failed = False
        self._touch()

    async def refresh_scheduled(self) -> None:
        self._scheduled_generation += 1
        generation = self._scheduled_generation
        try:
            rows = await self.store.select(
                self.settings.table_dispatch,
                {"order_status": OrderStatus.SCHEDULED.value, "admin_id": self.agent_id},
                order_by="scheduled_time",
            )
            scheduled = [self._scheduled_from_row(row) for row in rows]
        except Exception as e:
            if generation != self._scheduled_generation:
                return
            logger.error(f"Scheduled orders fetch failed for agent {self.agent_id}: {e}")
            self._scheduled_rows = []
            self._scheduled = []
            self._scheduled_failed = True
            return
        if generation != self._scheduled_generation:
            logger.debug(f"Dropping superseded scheduled orders fetch for agent {self.agent_id}")
            return
        self._scheduled_rows = scheduled
        self._scheduled_failed = False
        self.apply_visibility_gate()
        self._touch()

    def apply_visibility_gate(self) -> None:
        now = self.clock()
        window = self.settings.scheduled_visibility_minutes
        visible: List[Tuple[datetime, ScheduledOrder]] = []
        for order in self._scheduled_rows:
            scheduled_at = try_parse_scheduled_time(order.scheduled_time)
            if scheduled_at is None:
                logger.warning(f"Hiding order {order.order_id}: unparseable scheduled time {order.scheduled_time!r}")
                continue
            if is_visible(scheduled_at, now, window):
                visible.append((scheduled_at, order))
        visible.sort(key=lambda pair: pair[0])
        self._scheduled = [order for _, order in visible]

    async def recheck(self) -> None:
        """Interval tick: re-apply the visibility gate and retry failed slices."""
        if self._placed_failed:
            await self.refresh_placed()
        if self._scheduled_failed:
            await self.refresh_scheduled()
        else:
            self.apply_visibility_gate()

    # =========================================================================
    # Notifications
    # =========================================================================

    async def _on_placed_change(self, change: Dict[str, Any]) -> None:
        logger.debug(f"Placed orders changed for agent {self.agent_id}: {change.get('eventType')}")
        await self.refresh_placed()

    async def _on_dispatch_change(self, change: Dict[str, Any]) -> None:
        logger.debug(f"Dispatch rows changed for agent {self.agent_id}: {change.get('eventType')}")
        await self.refresh_scheduled()

    async def _on_incoming_call(self, payload: Dict[str, Any]) -> None:
        caller = payload.get("caller") or payload.get("from")
        if not caller:
            logger.warning(f"Ignoring incoming call without caller: {payload}")
            return
        call_id = str(payload.get("callSid") or payload.get("id") or uuid4().hex)
        if call_id in self._calls:
            return
        self._calls[call_id] = IncomingCall(
            id=call_id,
            caller=str(caller),
            caller_name=payload.get("name") or payload.get("callerName"),
            dispatch_details_ref=payload.get("dispatchLink") or payload.get("dashboardLink"),
            subscription_status=payload.get("subscriptionStatus"),
            received_at=datetime.now(timezone.utc),
        )
        logger.info(f"Incoming call {call_id} from {caller} queued for agent {self.agent_id}")
        self._touch()

    # =========================================================================
    # Row mapping
    # =========================================================================

    async def _placed_from_row(self, row: Row) -> PlacedOrder:
        name, phone = await self._resolve_customer(row)
        return PlacedOrder(
            order_id=str(row.get("order_id")),
            customer_name=name,
            customer_phone=phone,
            address=await self._resolve_address(row.get("address_id")),
            service_category=row.get("service_category"),
            work_description=row.get("work_description"),
            created_at=str(row["created_at"]) if row.get("created_at") else None,
        )

    async def _resolve_customer(self, row: Row) -> Tuple[str, str]:
        settings = self.settings
        name: Optional[str] = None
        phone: Optional[str] = None
        try:
            if row.get("member_id"):
                member_id = row["member_id"]
                allowed = await self.store.select_one(settings.table_allowed_numbers, {"member_id": member_id})
                membership = await self.store.select_one(settings.table_memberships, {"member_id": member_id})
                phone = (allowed or {}).get("phone_number")
                name = (membership or {}).get("full_name")
            elif row.get("user_id"):
                user = await self.store.select_one(settings.table_users, {"user_id": row["user_id"]})
                name = (user or {}).get("full_name")
                phone = (user or {}).get("phone_number")
        except Exception as e:
            logger.warning(f"Customer lookup failed for order {row.get('order_id')}: {e}")
        return name or UNKNOWN_CUSTOMER, str(phone) if phone else UNKNOWN_PHONE

    async def _resolve_address(self, address_id: Any) -> str:
        if not address_id:
            return NO_ADDRESS
        try:
            address = await self.store.select_one(self.settings.table_addresses, {"address_id": address_id})
        except Exception as e:
            logger.warning(f"Address lookup failed for {address_id}: {e}")
            return ADDRESS_NOT_FOUND
        return (address or {}).get("address_line") or ADDRESS_NOT_FOUND

    def _scheduled_from_row(self, row: Row) -> ScheduledOrder:
        return ScheduledOrder(
            order_id=str(row.get("order_id")),
            customer_name=row.get("customer_name") or UNKNOWN_CUSTOMER,
            customer_phone=str(row.get("phone_number") or UNKNOWN_PHONE),
            address=row.get("request_address") or NO_ADDRESS,
            scheduled_time=row.get("scheduled_time") or "",
            category=row.get("category"),
            ticket_id=row.get("ticket_id"),
            order_request=row.get("order_request"),
        )

    def _touch(self) -> None:
        self._refreshed_at = datetime.now(timezone.utc)


class WorkQueueRegistry:
    """One aggregator per agent id, shared by that agent's tabs."""

    def __init__(self, factory: Callable[[str], WorkQueueAggregator]) -> None:
        self._factory = factory
        self._aggregators: Dict[str, WorkQueueAggregator] = {}
        self._tab_agents: Dict[str, str] = {}

    async def watch(self, tab_id: str, agent_id: str) -> WorkQueueAggregator:
        previous = self._tab_agents.get(tab_id)
        if previous and previous != agent_id:
            await self.release(tab_id)

        self._tab_agents[tab_id] = agent_id
        aggregator = self._aggregators.get(agent_id)
        if aggregator is None:
            aggregator = self._factory(agent_id)
            self._aggregators[agent_id] = aggregator
            await aggregator.start()
        return aggregator

    def get(self, agent_id: str) -> Optional[WorkQueueAggregator]:
        return self._aggregators.get(agent_id)

    async def release(self, tab_id: str) -> None:
        agent_id = self._tab_agents.pop(tab_id, None)
        if agent_id is None or agent_id in self._tab_agents.values():
            return
        aggregator = self._aggregators.pop(agent_id, None)
        if aggregator is not None:
            await aggregator.stop()

    async def stop_all(self) -> None:
        for aggregator in list(self._aggregators.values()):
            await aggregator.stop()
        self._aggregators.clear()
        self._tab_agents.clear()


_registry_instance: Optional[WorkQueueRegistry] = None


async def get_work_queue_registry() -> WorkQueueRegistry:
    global _registry_instance
    if _registry_instance:
        return _registry_instance

    store = await get_record_store()
    events = get_event_source()
    scheduler = get_scheduler_service()

    def _create(agent_id: str) -> WorkQueueAggregator:
        return WorkQueueAggregator(agent_id, store=store, events=events, scheduler=scheduler)

    _registry_instance = WorkQueueRegistry(_create)
    return _registry_instance
