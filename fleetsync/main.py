from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from fleetsync.api.routes import router as api_router
from fleetsync.config import get_settings
from fleetsync.db import Base, get_engine
from fleetsync.exceptions import (
    ConfigurationError, ConnectionLookupError, FleetSyncError, IdentityResolutionError, UnknownToolError,
)
from fleetsync.utils import logger
import fleetsync.models  # noqa: F401 ensure models are imported so tables are known

# create FastAPI instance
app = FastAPI(title="fleetsync")
app.include_router(api_router)


@app.exception_handler(ConfigurationError)
def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Server misconfigured on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Server misconfigured", "details": str(exc)})


@app.exception_handler(IdentityResolutionError)
def identity_error_handler(request: Request, exc: IdentityResolutionError):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(UnknownToolError)
def unknown_tool_handler(request: Request, exc: UnknownToolError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(ConnectionLookupError)
def connection_lookup_handler(request: Request, exc: ConnectionLookupError):
    logger.error("Connection lookup failed: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Failed to load fleet connections.", "details": str(exc)})


@app.exception_handler(FleetSyncError)
def fleet_sync_error_handler(request: Request, exc: FleetSyncError):
    logger.error("Request failed on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal error", "details": str(exc)})


@app.on_event("startup")
def on_startup():
    # Ensure database tables are created on startup; requests report missing config themselves
    try:
        Base.metadata.create_all(bind=get_engine())
    except ConfigurationError as e:
        logger.error("Skipping table creation: %s", e)
    except SQLAlchemyError as e:
        logger.error("Table creation failed, continuing with existing schema: %s", e)

    if get_settings().enable_scheduler:
        from fleetsync.scheduler import start_scheduler
        start_scheduler()


@app.on_event("shutdown")
def on_shutdown():
    from fleetsync.scheduler import scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)
