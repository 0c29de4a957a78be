"""
FastAPI application entry point for the outlet policy engine.
"""
import logging
import threading
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from powerguard import __version__

from .dependencies import get_runtime
from .routers import devices, limits, reports
from .settings import settings

LOGGER = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Powerguard API",
    description="Outlet monitoring, manual control and energy limits",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(devices.router, prefix="/api/v1/devices")
app.include_router(limits.router, prefix="/api/v1/combined-limits")
app.include_router(reports.router, prefix="/api/v1/reports")

_engine_thread: Optional[threading.Thread] = None


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Powerguard API", "version": __version__}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.on_event("startup")
async def startup_event():
    """Start the enforcement ticks in the background when RUN_ENGINE is set."""
    global _engine_thread  # pylint: disable=global-statement
    LOGGER.info("Powerguard API starting (CORS: %s)", ", ".join(settings.cors_origins_list))
    if not settings.RUN_ENGINE:
        return
    runtime = get_runtime()
    runtime.registry.start()
    _engine_thread = threading.Thread(
        target=runtime.scheduler.run_forever,
        name="powerguard-engine",
        daemon=True,
    )
    _engine_thread.start()
    LOGGER.info("Policy engine running inside the API process")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the background engine, if any."""
    if _engine_thread is None:
        return
    runtime = get_runtime()
    runtime.close()
    _engine_thread.join(timeout=5.0)
    LOGGER.info("Powerguard API shut down")
