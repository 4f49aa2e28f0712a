from fastapi import APIRouter

from dispatch_console.api.routes import agent, health, helpdesk, queue, session, workflow
from dispatch_console.core.config import get_settings


def get_api_router() -> APIRouter:
    settings = get_settings()
    router = APIRouter(prefix=settings.api_prefix)
    router.include_router(health.router)
    router.include_router(agent.router)
    router.include_router(queue.router)
    router.include_router(session.router)
    router.include_router(workflow.router)
    router.include_router(helpdesk.router)  # Employee helpdesk (cancel + re-dispatch)
    return router
