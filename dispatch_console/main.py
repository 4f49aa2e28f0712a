import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dispatch_console.api.router import get_api_router
from dispatch_console.core.config import get_settings
from dispatch_console.middleware.request_id import RequestContextLogFilter, RequestIdMiddleware
from dispatch_console.services.backend_client import get_backend_client
from dispatch_console.services.realtime import get_event_source
from dispatch_console.services.scheduler_service import get_scheduler_service
from dispatch_console.services.work_queue import get_work_queue_registry


logger = logging.getLogger(__name__)
settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s %(tab_id)s] %(message)s",
)
for handler in logging.getLogger().handlers:
    handler.addFilter(RequestContextLogFilter())
logging.getLogger("dispatch_console").setLevel(settings.log_level)

# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("socketio").setLevel(logging.WARNING)
logging.getLogger("engineio").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the scheduler and the incoming-call connection; tear down work queues on exit."""
    scheduler = get_scheduler_service()
    scheduler.start()

    events = get_event_source()
    try:
        await events.connect()
    except Exception as e:
        # Queue still serves placed/scheduled orders without the call feed
        logger.error(f"Realtime connection failed: {e}")

    yield

    registry = await get_work_queue_registry()
    await registry.stop_all()
    await events.disconnect()
    await get_backend_client().close()
    scheduler.shutdown()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",   # Vite console
    ],
    allow_origin_regex="https?://.*",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
)

app.include_router(get_api_router())


@app.get("/")
def root() -> dict:
    return {"message": "Dispatch console backend", "api_prefix": settings.api_prefix}
