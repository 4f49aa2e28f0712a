from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from dispatch_console.core.auth import AuthAgent, require_agent
from dispatch_console.core.config import get_settings
from dispatch_console.main import app
from dispatch_console.services import backend_client as backend_client_module
from dispatch_console.services import geocoder as geocoder_module
from dispatch_console.services import identity as identity_module
from dispatch_console.services import presence as presence_module
from dispatch_console.services import record_store as record_store_module
from dispatch_console.services import session_state as session_state_module
from dispatch_console.services import work_queue as work_queue_module
from dispatch_console.services.backend_client import BackendClientError
from dispatch_console.services.geocoder import Coordinates
from dispatch_console.services.realtime import EventSource
from dispatch_console.services.scheduler_service import SchedulerService


# Configure anyio to use only asyncio backend
@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeBackend:
    """In-memory stand-in for the call-center backend."""

    def __init__(self) -> None:
        self.admin_ids: Dict[str, str] = {"agent-uid": "42"}
        self.members: Dict[str, Dict[str, Any]] = {
            "9990001111": {"member_id": "M-1", "customer_name": "Asha Rao"},
        }
        self.addresses: Dict[str, str] = {"A-1": "12 MG Road, Bengaluru"}
        self.servicemen: List[Dict[str, Any]] = []
        self.dispatch_rows: Dict[str, Dict[str, Any]] = {}
        self.employees: Dict[str, Dict[str, Any]] = {}
        self.active_orders: Dict[str, Dict[str, Any]] = {}
        self.status_calls: List[Dict[str, str]] = []
        self.dispatch_calls: List[Dict[str, Any]] = []
        self.cancel_calls: List[Dict[str, str]] = []
        self.call_logs: List[Dict[str, str]] = []
        self.registrations: List[Dict[str, Any]] = []
        self.fail_dispatch = False

    async def set_agent_status(self, agent_id, agent_status):
        self.status_calls.append({"agent_id": agent_id, "status": agent_status})
        return {"ok": True}

    async def get_admin_id(self, firebase_uid):
        return self.admin_ids.get(firebase_uid)

    async def register_agent(self, *, firebase_uid, email, agent_id, admin_id):
        record = {"firebase_uid": firebase_uid, "email": email, "agent_id": agent_id, "admin_id": admin_id}
        self.registrations.append(record)
        return {"success": True}

    async def lookup_member(self, phone_number):
        return self.members.get(phone_number)

    async def lookup_address(self, address_id):
        return self.addresses.get(address_id)

    async def available_servicemen(self, service):
        return [row for row in self.servicemen if not row.get("category") or row["category"] == service]

    async def dispatch(self, payload):
        if self.fail_dispatch:
            raise BackendClientError(500, "dispatch table unavailable")
        self.dispatch_calls.append(payload)
        return {"ticketId": payload.get("ticketId")}

    async def dispatch_details(self, order_id):
        return self.dispatch_rows.get(order_id)

    async def cancel_dispatch(self, order_id, reason):
        self.cancel_calls.append({"order_id": order_id, "reason": reason})
        return {"success": True}

    async def employee_details(self, mobile_number):
        return self.employees.get(mobile_number)

    async def active_order(self, employee_id):
        return self.active_orders.get(employee_id, {})

    async def save_call_log(self, *, phone, category, notes, agent_name):
        self.call_logs.append({"phone": phone, "category": category, "notes": notes, "agentName": agent_name})
        return {"success": True, "ticketId": f"TKT-{len(self.call_logs):04d}"}

    async def close(self):
        return None


class FakeGeocoder:
    def __init__(self, places: Optional[Dict[str, Coordinates]] = None) -> None:
        self.places = places or {}
        self.queries: List[str] = []

    async def geocode(self, query):
        self.queries.append(query)
        return self.places.get(query)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_geocoder() -> FakeGeocoder:
    return FakeGeocoder({"12 MG Road, Bengaluru": Coordinates(lat=12.9716, lng=77.5946)})


@pytest.fixture
def record_store() -> record_store_module.InMemoryRecordStore:
    return record_store_module.InMemoryRecordStore()


@pytest.fixture
def session_storage() -> session_state_module.InMemorySessionStorage:
    return session_state_module.InMemorySessionStorage(get_settings().session_ttl_minutes * 60)


@pytest.fixture
def event_source() -> EventSource:
    return EventSource()


@pytest.fixture
def idle_scheduler() -> SchedulerService:
    return SchedulerService(timezone="UTC")


@pytest.fixture(autouse=True)
def override_dependencies(fake_backend, fake_geocoder, record_store, session_storage, event_source, idle_scheduler):
    identity = identity_module.IdentityService(fake_backend)
    presence = presence_module.PresenceService(fake_backend)

    def _create(agent_id: str) -> work_queue_module.WorkQueueAggregator:
        return work_queue_module.WorkQueueAggregator(
            agent_id, store=record_store, events=event_source, scheduler=idle_scheduler
        )

    registry = work_queue_module.WorkQueueRegistry(_create)

    async def _store():
        return record_store

    sessions = session_state_module.SessionRegistry(session_storage)

    async def _sessions():
        return sessions

    async def _registry():
        return registry

    overrides = {
        require_agent: lambda: AuthAgent(uid="agent-uid", email="agent@example.com"),
        backend_client_module.get_backend_client: lambda: fake_backend,
        geocoder_module.get_geocoder: lambda: fake_geocoder,
        identity_module.get_identity_service: lambda: identity,
        presence_module.get_presence_service: lambda: presence,
        record_store_module.get_record_store: _store,
        session_state_module.get_session_registry: _sessions,
        work_queue_module.get_work_queue_registry: _registry,
    }
    app.dependency_overrides.update(overrides)
    yield registry
    for dependency in overrides:
        app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def test_client() -> TestClient:
    with TestClient(app, headers={"X-Console-Tab": "tab-1"}) as client:
        yield client
