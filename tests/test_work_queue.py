import asyncio
from datetime import datetime, timedelta

import pytest
from apscheduler.events import EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.triggers.interval import IntervalTrigger

from dispatch_console.core.config import get_settings
from dispatch_console.services.dispatch import DispatchWorkflow, ServicemanSelector
from dispatch_console.services.identity import AdminIdResolution
from dispatch_console.services.realtime import EventSource
from dispatch_console.services.record_store import InMemoryRecordStore, RecordStoreError
from dispatch_console.services.scheduler_service import SchedulerService
from dispatch_console.services.session_state import InMemorySessionStorage, SessionState
from dispatch_console.services.work_queue import WorkQueueAggregator, WorkQueueRegistry

NOW = datetime(2025, 3, 10, 14, 0)


def seeded_store() -> InMemoryRecordStore:
    return InMemoryRecordStore(
        {
            "placed_orders": [
                {
                    "order_id": "P-1",
                    "status": "Placed",
                    "admin_id": 42,
                    "member_id": "M-1",
                    "address_id": "A-1",
                    "service_category": "Plumbing",
                    "work_description": "Leaking tap",
                    "created_at": "2025-03-10T09:00:00",
                },
                {"order_id": "P-other", "status": "Placed", "admin_id": 7, "created_at": "2025-03-10T09:05:00"},
            ],
            "dispatch": [
                {
                    "order_id": "S-1",
                    "order_status": "Scheduled",
                    "admin_id": "42",
                    "customer_name": "Ravi",
                    "phone_number": "9990002222",
                    "request_address": "4 Park Street",
                    "scheduled_time": "2025-03-10 02:30 PM",
                    "category": "Electrical",
                    "ticket_id": "TKT-9",
                    "order_request": "Fan not working",
                },
            ],
            "memberships": [{"member_id": "M-1", "full_name": "Asha Rao"}],
            "membership_allowed_numbers": [{"member_id": "M-1", "phone_number": "9990001111"}],
            "addresses": [{"address_id": "A-1", "member_id": "M-1", "address_line": "12 MG Road, Bengaluru"}],
        }
    )


def make_aggregator(store, events=None, agent_id="42") -> WorkQueueAggregator:
    return WorkQueueAggregator(
        agent_id,
        store=store,
        events=events or EventSource(),
        scheduler=SchedulerService(timezone="UTC"),
        clock=lambda: NOW,
    )


@pytest.mark.anyio
async def test_queue_counts_and_placed_order_dispatch_scenario(fake_backend, fake_geocoder):
    store = seeded_store()
    aggregator = make_aggregator(store)
    await aggregator.start()

    snapshot = aggregator.snapshot()
    assert snapshot.total == 2
    assert (snapshot.counts.calls, snapshot.counts.placed, snapshot.counts.scheduled) == (0, 1, 1)
    assert [item.kind for item in snapshot.items] == ["placed_order", "scheduled_order"]

    placed = aggregator.get_placed("P-1")
    assert placed.customer_name == "Asha Rao"
    assert placed.customer_phone == "9990001111"
    assert placed.address == "12 MG Road, Bengaluru"

    workflow = DispatchWorkflow(
        SessionState(InMemorySessionStorage(60), "tab-1"),
        backend=fake_backend,
        store=store,
        selector=ServicemanSelector(fake_backend, fake_geocoder),
        settings=get_settings(),
        admin=AdminIdResolution(value="42"),
    )
    await workflow.begin_from_placed_order(placed)

    assert store.rows("placed_orders")[0]["status"] == "Placing"
    assert aggregator.get_placed("P-1") is None
    assert aggregator.snapshot().counts.placed == 0

    outcome = await workflow.dispatch("SM-1")

    assert store.rows("placed_orders")[0]["status"] == "Assigned"
    assert outcome.redirect == "/"
    payload = fake_backend.dispatch_calls[-1]
    assert payload["orderId"] == "P-1"
    assert payload["orderStatus"] == "Assigned"
    assert payload["userId"] == "SM-1"
    assert payload["adminId"] == "42"
    assert payload["isScheduledUpdate"] is False

    await aggregator.stop()


@pytest.mark.anyio
async def test_visibility_gate_hides_far_future_and_unparseable_orders():
    store = InMemoryRecordStore(
        {
            "dispatch": [
                {"order_id": "late", "order_status": "Scheduled", "admin_id": "42", "scheduled_time": "2025-03-10 03:01 PM"},
                {"order_id": "soon", "order_status": "Scheduled", "admin_id": "42", "scheduled_time": "2025-03-10 02:30 PM"},
                {"order_id": "overdue", "order_status": "Scheduled", "admin_id": "42", "scheduled_time": "2025-03-10 01:50 PM"},
                {"order_id": "garbled", "order_status": "Scheduled", "admin_id": "42", "scheduled_time": "tomorrow"},
            ]
        }
    )
    aggregator = make_aggregator(store)
    await aggregator.refresh_scheduled()

    visible = [item.order_id for item in aggregator.snapshot().items]
    assert visible == ["overdue", "soon"]


@pytest.mark.anyio
async def test_recheck_surfaces_orders_entering_the_window():
    now = {"value": datetime(2025, 3, 10, 13, 0)}
    store = InMemoryRecordStore(
        {"dispatch": [{"order_id": "S-2", "order_status": "Scheduled", "admin_id": "42", "scheduled_time": "2025-03-10 02:30 PM"}]}
    )
    aggregator = WorkQueueAggregator(
        "42",
        store=store,
        events=EventSource(),
        scheduler=SchedulerService(timezone="UTC"),
        clock=lambda: now["value"],
    )
    await aggregator.refresh_scheduled()
    assert aggregator.snapshot().total == 0

    now["value"] = datetime(2025, 3, 10, 13, 45)
    await aggregator.recheck()

    assert aggregator.snapshot().total == 1


@pytest.mark.anyio
async def test_customer_resolution_fallbacks():
    store = InMemoryRecordStore(
        {
            "placed_orders": [
                {"order_id": "U-1", "status": "Placed", "admin_id": "42", "user_id": "U-9", "created_at": "1"},
                {"order_id": "X-1", "status": "Placed", "admin_id": "42", "address_id": "missing", "created_at": "2"},
            ],
            "users": [{"user_id": "U-9", "full_name": "Kiran", "phone_number": "9000"}],
        }
    )
    aggregator = make_aggregator(store)
    await aggregator.refresh_placed()

    by_user = aggregator.get_placed("U-1")
    assert (by_user.customer_name, by_user.customer_phone, by_user.address) == ("Kiran", "9000", "No address provided")
    unknown = aggregator.get_placed("X-1")
    assert (unknown.customer_name, unknown.customer_phone, unknown.address) == ("Unknown Customer", "N/A", "Address not found")


@pytest.mark.anyio
async def test_incoming_calls_are_deduplicated_and_listed_first():
    events = EventSource()
    aggregator = make_aggregator(seeded_store(), events=events)
    await aggregator.start()

    await events.emit("incoming-call", {"callSid": "CA1", "caller": "9990003333", "name": "Meera"})
    await events.emit("incoming-call", {"callSid": "CA1", "caller": "9990003333", "name": "Meera"})
    await events.emit("incoming-call", {"name": "no caller"})

    snapshot = aggregator.snapshot()
    assert snapshot.counts.calls == 1
    assert snapshot.items[0].kind == "incoming_call"
    assert snapshot.items[0].caller_name == "Meera"
    assert snapshot.total == 3

    assert aggregator.take_call("CA1") is not None
    assert aggregator.snapshot().counts.calls == 0
    await aggregator.stop()


class FailingStore(InMemoryRecordStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failing = True

    async def select(self, table, filters=None, **kwargs):
        if self.failing:
            raise RecordStoreError("connection reset")
        return await super().select(table, filters, **kwargs)


@pytest.mark.anyio
async def test_fetch_failure_yields_empty_slice_and_is_retried_on_tick():
    store = FailingStore({"placed_orders": [{"order_id": "P-1", "status": "Placed", "admin_id": "42"}]})
    aggregator = make_aggregator(store)

    await aggregator.start()
    assert aggregator.snapshot().total == 0

    store.failing = False
    await aggregator.recheck()

    assert aggregator.snapshot().counts.placed == 1
    await aggregator.stop()


@pytest.mark.anyio
async def test_stop_tears_down_subscriptions_and_listener():
    store = seeded_store()
    events = EventSource()
    aggregator = make_aggregator(store, events=events)

    await aggregator.start()
    assert store.subscription_count == 2
    assert events.listener_count("incoming-call") == 1

    await aggregator.stop()
    assert store.subscription_count == 0
    assert events.listener_count("incoming-call") == 0


@pytest.mark.anyio
async def test_registry_stops_previous_aggregator_when_agent_changes():
    store = seeded_store()
    registry = WorkQueueRegistry(lambda agent_id: make_aggregator(store, agent_id=agent_id))

    first = await registry.watch("tab-1", "42")
    assert await registry.watch("tab-1", "42") is first

    second = await registry.watch("tab-1", "43")

    assert not first.is_running
    assert second.is_running
    assert registry.get("42") is None
    await registry.stop_all()
    assert store.subscription_count == 0


class SlowLookupStore(InMemoryRecordStore):
    slow = False

    async def select_one(self, table, filters, *, columns="*"):
        if self.slow:
            await asyncio.sleep(0.05)
        return await super().select_one(table, filters, columns=columns)


@pytest.mark.anyio
async def test_superseded_placed_fetch_does_not_overwrite_newer_result():
    store = SlowLookupStore(
        {
            "placed_orders": [
                {"order_id": "P-1", "status": "Placed", "admin_id": "42", "member_id": "M-1", "address_id": "A-1"},
            ],
            "memberships": [{"member_id": "M-1", "full_name": "Asha Rao"}],
        }
    )
    aggregator = make_aggregator(store)

    store.slow = True
    older = asyncio.create_task(aggregator.refresh_placed())
    await asyncio.sleep(0.01)
    store.slow = False
    await store.update("placed_orders", {"status": "Placing"}, {"order_id": "P-1"})
    await aggregator.refresh_placed()
    await older

    assert aggregator.get_placed("P-1") is None
    assert aggregator.snapshot().counts.placed == 0


@pytest.mark.anyio
async def test_start_registers_visibility_job_and_stop_removes_it():
    scheduler = SchedulerService(timezone="UTC")
    scheduler.start()
    try:
        aggregator = WorkQueueAggregator(
            "42", store=seeded_store(), events=EventSource(), scheduler=scheduler, clock=lambda: NOW
        )
        await aggregator.start()

        job = scheduler.get_job("work-queue-42")
        assert job is not None
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.trigger.interval == timedelta(seconds=get_settings().scheduled_recheck_seconds)
        assert [entry["job_id"] for entry in scheduler.list_jobs()] == ["work-queue-42"]

        await aggregator.stop()

        assert scheduler.get_job("work-queue-42") is None
        assert scheduler.list_jobs() == []
    finally:
        scheduler.shutdown()


@pytest.mark.anyio
async def test_failed_visibility_job_is_reported_in_job_listing():
    scheduler = SchedulerService(timezone="UTC")
    scheduler.start()
    try:
        aggregator = WorkQueueAggregator(
            "42", store=seeded_store(), events=EventSource(), scheduler=scheduler, clock=lambda: NOW
        )
        await aggregator.start()

        scheduler._on_job_executed(
            JobExecutionEvent(EVENT_JOB_ERROR, "work-queue-42", "default", NOW, exception=RuntimeError("boom"))
        )

        [entry] = scheduler.list_jobs()
        assert entry["interval_seconds"] == 60
        assert entry["last_error"] == "boom"
        assert entry["next_run_time"] is not None
        await aggregator.stop()
    finally:
        scheduler.shutdown()


@pytest.mark.anyio
async def test_duplicate_rows_surface_once_in_snapshot():
    row = {"order_id": "P-1", "status": "Placed", "admin_id": "42", "created_at": "2025-03-10T09:00:00"}
    aggregator = make_aggregator(InMemoryRecordStore({"placed_orders": [dict(row), dict(row)]}))

    await aggregator.refresh_placed()
    snapshot = aggregator.snapshot()

    assert [item.identity for item in snapshot.items] == [("placed_order", "P-1")]
    assert (snapshot.total, snapshot.counts.placed) == (1, 1)
