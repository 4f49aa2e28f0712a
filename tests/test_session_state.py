import asyncio

import pytest

from dispatch_console.core.config import get_settings
from dispatch_console.models.session import STEP_NAMES, WorkflowStep
from dispatch_console.services.dispatch import DispatchWorkflow, ServicemanSelector
from dispatch_console.services.identity import AdminIdResolution
from dispatch_console.services.record_store import InMemoryRecordStore
from dispatch_console.services.session_state import (
    SESSION_KEY,
    InMemorySessionStorage,
    SessionRegistry,
    SessionState,
    step_key,
)


@pytest.mark.anyio
async def test_update_step_data_merges_instead_of_replacing():
    session = SessionState(InMemorySessionStorage(60), "tab-1")
    await session.start_call_session({"phoneNumber": "9990001111"})

    await session.update_step_data("services", {"selectedServices": {"x": []}})
    await session.update_step_data("services", {"foo": 1})

    assert session.get_step_data("services") == {"selectedServices": {"x": []}, "foo": 1}


@pytest.mark.anyio
async def test_start_resets_steps_and_seeds_dashboard():
    session = SessionState(InMemorySessionStorage(60), "tab-1")
    await session.start_call_session({"phoneNumber": "1"})
    await session.update_step_data("scheduling", {"selectedDate": "2025-03-10"})

    second = await session.start_call_session({"phoneNumber": "2"})

    assert session.get_step_data("dashboard") == {"phoneNumber": "2"}
    assert session.get_step_data("scheduling") == {}
    assert second.is_active
    assert second.workflow_step == WorkflowStep.SEARCH_SUBSCRIBER


@pytest.mark.anyio
async def test_session_ids_are_monotonic():
    session = SessionState(InMemorySessionStorage(60), "tab-1")
    first = await session.start_call_session({})
    second = await session.start_call_session({})
    assert second.session_id > first.session_id


@pytest.mark.anyio
async def test_unknown_step_is_rejected():
    session = SessionState(InMemorySessionStorage(60), "tab-1")
    await session.start_call_session({})
    with pytest.raises(ValueError):
        await session.update_step_data("payment", {"x": 1})


@pytest.mark.anyio
async def test_restore_reloads_persisted_state_per_tab():
    storage = InMemorySessionStorage(60)
    session = SessionState(storage, "tab-1")
    started = await session.start_call_session({"phoneNumber": "9990001111"})
    await session.update_step_data("services", {"selectedServices": {"Plumbing": ["Leak"]}})
    await session.set_workflow_step(WorkflowStep.SCHEDULING)

    restored = await SessionState.restore(storage, "tab-1")
    other_tab = await SessionState.restore(storage, "tab-2")

    assert restored.call_session.session_id == started.session_id
    assert restored.workflow_step == WorkflowStep.SCHEDULING
    assert restored.get_step_data("services") == {"selectedServices": {"Plumbing": ["Leak"]}}
    assert not other_tab.is_active


@pytest.mark.anyio
async def test_end_call_session_clears_state_and_storage():
    storage = InMemorySessionStorage(60)
    session = SessionState(storage, "tab-1")
    await session.start_call_session({"phoneNumber": "1"})

    await session.end_call_session()

    assert not session.is_active
    assert session.get_step_data("dashboard") == {}
    assert await storage.get("tab-1", SESSION_KEY) is None
    for step in STEP_NAMES:
        assert await storage.get("tab-1", step_key(step)) is None


@pytest.mark.anyio
async def test_restore_discards_unreadable_payloads():
    storage = InMemorySessionStorage(60)
    await storage.set("tab-1", SESSION_KEY, "{not json")

    restored = await SessionState.restore(storage, "tab-1")

    assert restored.call_session is None


@pytest.mark.anyio
async def test_writers_of_different_steps_do_not_clobber_each_other():
    storage = InMemorySessionStorage(60)
    await SessionState(storage, "tab-1").start_call_session({"phoneNumber": "1"})
    first = await SessionState.restore(storage, "tab-1")
    second = await SessionState.restore(storage, "tab-1")

    await first.update_step_data("dashboard", {"ticketId": "TKT-1"})
    await second.update_step_data("services", {"selectedServices": {"Plumbing": []}})

    reloaded = await SessionState.restore(storage, "tab-1")
    assert reloaded.get_step_data("dashboard") == {"phoneNumber": "1", "ticketId": "TKT-1"}
    assert reloaded.get_step_data("services") == {"selectedServices": {"Plumbing": []}}


@pytest.mark.anyio
async def test_registry_shares_one_state_per_tab():
    registry = SessionRegistry(InMemorySessionStorage(60))

    first = await registry.get("tab-1")
    again = await registry.get("tab-1")
    other = await registry.get("tab-2")

    assert first is again
    assert first is not other


@pytest.mark.anyio
async def test_overlapping_requests_on_one_tab_keep_both_merges(fake_backend, fake_geocoder):
    storage = InMemorySessionStorage(60)
    registry = SessionRegistry(storage)
    await (await registry.get("tab-1")).start_call_session({"phoneNumber": "9990001111"})

    save_call_log = fake_backend.save_call_log

    async def slow_save_call_log(**kwargs):
        await asyncio.sleep(0.05)
        return await save_call_log(**kwargs)

    fake_backend.save_call_log = slow_save_call_log
    workflow = DispatchWorkflow(
        await registry.get("tab-1"),
        backend=fake_backend,
        store=InMemoryRecordStore(),
        selector=ServicemanSelector(fake_backend, fake_geocoder),
        settings=get_settings(),
        admin=AdminIdResolution(value="42"),
    )
    services_state = await registry.get("tab-1")

    await asyncio.gather(
        workflow.save_notes("Kitchen sink leaking", "support"),
        services_state.update_step_data("services", {"selectedServices": {"Plumbing": []}}),
    )

    reloaded = await SessionState.restore(storage, "tab-1")
    assert reloaded.get_step_data("services") == {"selectedServices": {"Plumbing": []}}
    assert reloaded.get_step_data("dashboard")["ticketId"] == "TKT-0001"
