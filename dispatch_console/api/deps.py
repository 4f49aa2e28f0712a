"""Request-scoped wiring of the workflow collaborators."""

from __future__ import annotations

from fastapi import Depends, HTTPException

from dispatch_console.core.auth import AuthAgent, get_tab_id, require_agent
from dispatch_console.core.config import Settings, get_settings
from dispatch_console.services.backend_client import CallCenterBackendClient, get_backend_client
from dispatch_console.services.dispatch import DispatchWorkflow, EmployeeHelpdesk, ServicemanSelector, WorkflowError
from dispatch_console.services.geocoder import Geocoder, get_geocoder
from dispatch_console.services.identity import AdminIdResolution, IdentityService, get_identity_service
from dispatch_console.services.record_store import RecordStore, get_record_store
from dispatch_console.services.session_state import SessionRegistry, SessionState, get_session_registry


def workflow_http_error(exc: WorkflowError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


async def get_session_state(
    tab_id: str = Depends(get_tab_id),
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionState:
    return await registry.get(tab_id)


async def get_admin_resolution(
    agent: AuthAgent = Depends(require_agent),
    identity: IdentityService = Depends(get_identity_service),
) -> AdminIdResolution:
    return await identity.resolve_admin_id(agent.uid)


async def require_admin_id(admin: AdminIdResolution = Depends(get_admin_resolution)) -> str:
    if not admin.is_ready:
        raise HTTPException(status_code=403, detail=admin.error or "Admin id is not available")
    return admin.value


def get_serviceman_selector(
    backend: CallCenterBackendClient = Depends(get_backend_client),
    geocoder: Geocoder = Depends(get_geocoder),
) -> ServicemanSelector:
    return ServicemanSelector(backend, geocoder)


async def get_workflow(
    session: SessionState = Depends(get_session_state),
    admin: AdminIdResolution = Depends(get_admin_resolution),
    backend: CallCenterBackendClient = Depends(get_backend_client),
    store: RecordStore = Depends(get_record_store),
    selector: ServicemanSelector = Depends(get_serviceman_selector),
    settings: Settings = Depends(get_settings),
) -> DispatchWorkflow:
    return DispatchWorkflow(
        session,
        backend=backend,
        store=store,
        selector=selector,
        settings=settings,
        admin=admin,
    )


def get_helpdesk(backend: CallCenterBackendClient = Depends(get_backend_client)) -> EmployeeHelpdesk:
    return EmployeeHelpdesk(backend)
