import argparse
import logging
import platform
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Body, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

import config
from config import SimulationTiming
from errors import InternalError, ServiceError, SessionNotFoundError
from logging_config import setup_logging
from mock_data import get_system_info
from state import CANCELLED, COMPLETED, FAILED, SessionStore, utcnow
from worker import (
    DRIVER_SCAN, DRIVER_UPDATE, WINDOWS_UPDATE,
    SessionReaper, SessionScheduler, cancel_session,
)

logger = logging.getLogger(__name__)

START_MESSAGES = {
    DRIVER_SCAN: "Driver scan initiated",
    DRIVER_UPDATE: "Driver update initiated",
    WINDOWS_UPDATE: "Windows Update scan initiated",
}

# ───────── Modèles Pydantic ─────────────────────────────────────────────────

class StartResponse(BaseModel):
    sessionId: str
    status: str = "started"
    message: str
    timestamp: str

class StatusResponse(BaseModel):
    sessionId: str
    status: str
    progress: int
    startTime: str
    elapsedTime: float
    results: Optional[Dict[str, Any]] = None
    success: Optional[bool] = None
    error: Optional[str] = None

class CancelResponse(BaseModel):
    sessionId: str
    status: str
    message: str

class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: str
    uptime: float
    sessions: int

# ───────── Dépendances ───────────────────────────────────────────────────────

def get_store(request: Request) -> SessionStore:
    return request.app.state.store

def get_scheduler(request: Request) -> SessionScheduler:
    return request.app.state.scheduler

# ───────── Gestion des erreurs ───────────────────────────────────────────────

async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail},
                        headers=getattr(exc, "headers", None))

async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())})

class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    """Turns uncaught exceptions into 500 {error} responses inside the CORS layer."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
            return JSONResponse(status_code=500, content={"error": str(exc)})

# ───────── Application ───────────────────────────────────────────────────────

def create_app(store: Optional[SessionStore] = None,
               scheduler: Optional[SessionScheduler] = None,
               timing: Optional[SimulationTiming] = None) -> FastAPI:
    timing = timing or (scheduler.timing if scheduler else SimulationTiming())
    store = store if store is not None else (scheduler.store if scheduler else SessionStore())
    scheduler = scheduler or SessionScheduler(store, timing)
    reaper = SessionReaper(store, scheduler, timing)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper.start()
        yield
        logger.info("Shutting down, cancelling running operations")
        await reaper.stop()
        await scheduler.shutdown()

    app = FastAPI(title="Driver Update Server", lifespan=lifespan)
    app.state.store = store
    app.state.scheduler = scheduler
    app.state.reaper = reaper
    app.state.started_at = time.monotonic()

    # added first so CORSMiddleware wraps it and 500s keep the CORS headers
    app.add_middleware(UnhandledErrorMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    def start_operation(operation: str, settings: Optional[Dict[str, Any]],
                        store: SessionStore, scheduler: SessionScheduler,
                        background_tasks: BackgroundTasks) -> StartResponse:
        # 1. Création de la session
        session = store.create(operation, settings or {})
        logger.info(f"Created {operation} session {session.id}")

        # 2. Planification de la simulation, après l'envoi de la réponse
        background_tasks.add_task(scheduler.launch, session.id, operation)

        return StartResponse(
            sessionId=session.id,
            message=START_MESSAGES[operation],
            timestamp=utcnow().isoformat(),
        )

    @app.get("/", include_in_schema=False)
    def index():
        page = config.STATIC_DIR / "index.html"
        if not page.is_file():
            raise HTTPException(404, "index.html not found")
        return FileResponse(page)

    @app.get("/api/system-info")
    def system_info():
        try:
            info = get_system_info()
        except Exception as e:
            logger.error(f"Error getting system info: {e}")
            raise InternalError(str(e))
        logger.info("System information requested")
        return info

    @app.post("/api/driver-scan", response_model=StartResponse)
    async def driver_scan(background_tasks: BackgroundTasks,
                          settings: Optional[Dict[str, Any]] = Body(None),
                          store: SessionStore = Depends(get_store),
                          scheduler: SessionScheduler = Depends(get_scheduler)):
        return start_operation(DRIVER_SCAN, settings, store, scheduler, background_tasks)

    @app.post("/api/driver-update", response_model=StartResponse)
    async def driver_update(background_tasks: BackgroundTasks,
                            settings: Optional[Dict[str, Any]] = Body(None),
                            store: SessionStore = Depends(get_store),
                            scheduler: SessionScheduler = Depends(get_scheduler)):
        return start_operation(DRIVER_UPDATE, settings, store, scheduler, background_tasks)

    @app.post("/api/windows-update", response_model=StartResponse)
    async def windows_update(background_tasks: BackgroundTasks,
                             settings: Optional[Dict[str, Any]] = Body(None),
                             store: SessionStore = Depends(get_store),
                             scheduler: SessionScheduler = Depends(get_scheduler)):
        return start_operation(WINDOWS_UPDATE, settings, store, scheduler, background_tasks)

    @app.get("/api/status/{session_id}", response_model=StatusResponse,
             response_model_exclude_none=True)
    async def session_status(session_id: str, store: SessionStore = Depends(get_store)):
        session = store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        status = StatusResponse(
            sessionId=session_id,
            status=session.status,
            progress=session.progress,
            startTime=session.startTime.isoformat(),
            elapsedTime=round(session.elapsed_seconds(), 2),
        )
        if session.status == COMPLETED:
            status.results = session.results
            status.success = session.success
        elif session.status == FAILED:
            status.error = session.error
            status.success = session.success
        return status

    @app.post("/api/cancel/{session_id}", response_model=CancelResponse)
    async def cancel_operation(session_id: str,
                               store: SessionStore = Depends(get_store),
                               scheduler: SessionScheduler = Depends(get_scheduler)):
        session = cancel_session(store, scheduler, session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.status != CANCELLED:
            return CancelResponse(sessionId=session_id, status=session.status.lower(),
                                  message="Operation already finished")
        return CancelResponse(sessionId=session_id, status="cancelled",
                              message="Operation cancelled successfully")

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request, store: SessionStore = Depends(get_store)):
        return HealthResponse(
            timestamp=utcnow().isoformat(),
            uptime=round(time.monotonic() - request.app.state.started_at, 3),
            sessions=len(store),
        )

    return app


def main(argv=None):
    parser = argparse.ArgumentParser(description="Driver update simulation server")
    parser.add_argument("--host", default=config.HOST, help=f"Host to bind to (default: {config.HOST})")
    parser.add_argument("--port", type=int, default=config.PORT, help=f"Port to listen on (default: {config.PORT})")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Log level (default: %(default)s)")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    import uvicorn
    app = create_app()
    logger.info("Driver Update Server starting")
    logger.info(f"Server URL: http://localhost:{args.port}")
    logger.info(f"Environment: {config.APP_ENV}")
    logger.info(f"Platform: {platform.system()} {platform.release()}")
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
