"""
FastAPI backend for the notes webapp.

Serves the JSON API used by the project/notes/links pages. Every signed-in
browser session gets its own session context (backend client, query cache,
UI state, autosave scheduler); the hosted backend is reached over HTTP.

WebSocket endpoints push cache and autosave events to open pages.
"""

import os

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse
from pydantic import ValidationError

from api.shared.logger import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

from api.auth import router as auth_router
from api.context import SessionRegistry
from api.links import router as links_router
from api.notes import router as notes_router
from api.projects import router as projects_router
from api.shared.errors import GatewayError
from api.system import log_error
from api.system import router as system_router
from api.tags import router as tags_router
from api.ui_state import router as ui_router
from websocket import session_channel, ws_manager

# Create FastAPI app
app = FastAPI(
    title="EX_P02 notes API",
    description="API for the projects, notes and links workspace",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)

app.state.registry = SessionRegistry()


# ============= Exception Handlers =============


def _record(request: Request, message: str, level: str, details: str = None, exc: Exception = None) -> None:
    log_error(endpoint=str(request.url.path), message=message, level=level, details=details, exc=exc)


@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError):
    """Backend failures: 4xx pass through, everything else becomes a 502."""
    if exc.http_status >= 500:
        _record(request, exc.message, "error", f"Backend code: {exc.code}" if exc.code else None, exc)
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "error": exc.to_dict()},
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    """A model built inside a route (not from the request body) was rejected."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(include_url=False, include_context=False)},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        _record(request, str(exc.detail), "error", f"Status code: {exc.status_code}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    _record(request, str(exc), "critical", f"Unhandled exception: {type(exc).__name__}", exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include API routes
app.include_router(system_router, prefix="/api", tags=["system"])
app.include_router(auth_router, prefix="/api", tags=["auth"])
app.include_router(projects_router, prefix="/api", tags=["projects"])
app.include_router(notes_router, prefix="/api", tags=["notes"])
app.include_router(links_router, prefix="/api", tags=["links"])
app.include_router(tags_router, prefix="/api", tags=["tags"])
app.include_router(ui_router, prefix="/api", tags=["ui"])


# ============= Startup / Shutdown Events =============


@app.on_event("startup")
async def startup_event():
    registry: SessionRegistry = app.state.registry
    logger.info("Notes webapp starting...")
    if registry.settings.is_configured:
        logger.info("Backend: %s", registry.settings.url)
    else:
        logger.warning("SUPABASE_URL / SUPABASE_ANON_KEY not set; sign-in will fail")


@app.on_event("shutdown")
async def shutdown_event():
    """Tear down every live session (pending autosaves are cancelled)."""
    await app.state.registry.aclose()
    logger.info("Shutdown complete")


# ============= WebSocket Endpoints =============


async def _serve_websocket(websocket: WebSocket) -> None:
    try:
        while True:
            message_text = await websocket.receive_text()
            response = await ws_manager.handle_message(websocket, message_text)
            if response:
                await ws_manager.send_to_connection(websocket, response)

    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        await ws_manager.disconnect(websocket)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, client_id: str = None):
    """
    Main WebSocket endpoint for real-time updates.

    Clients subscribe to ``session:{session_id}`` to follow their session.

    Message format (JSON):
    {
        "type": "subscribe" | "unsubscribe" | "ping",
        "channel": "channel_name",
        "data": {}
    }
    """
    await ws_manager.connect(websocket, client_id)
    await _serve_websocket(websocket)


@app.websocket("/ws/session/{session_id}")
async def session_websocket_endpoint(websocket: WebSocket, session_id: str):
    """
    WebSocket endpoint bound to one session.

    Automatically subscribes to the session channel: query cache events,
    note saves and autosave failures.
    """
    if app.state.registry.get(session_id) is None:
        await websocket.close(code=4401)
        return
    await ws_manager.connect(websocket, f"session-{session_id}")
    await ws_manager.subscribe(websocket, session_channel(session_id))
    await _serve_websocket(websocket)


@app.get("/api/ws/stats")
async def get_websocket_stats():
    return {
        "total_connections": ws_manager.get_connection_count(),
        "connections": ws_manager.describe(),
    }


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Notes webapp backend server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("EXP02_PORT", 8000)),
        help="Port to run the server on (default: 8000 or EXP02_PORT env var)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Enable auto-reload",
    )
    args = parser.parse_args()

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )
