"""
Watch Party Server - Main Application Module

Real-time watch party rooms built with FastAPI and Socket.IO.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import socketio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.rooms_api import router as rooms_router
from .config import (
    APP_NAME,
    CORS_ALLOWED_ORIGINS,
    DEBUG,
    PERSISTENCE,
    REDIS_URL,
    ROOM_CLEANUP_INTERVAL,
    ROOM_TIMEOUT,
    VERSION,
    setup_logging,
)
from .handlers.socket_events import SocketEventHandler
from .services.cleanup import CleanupScheduler
from .services.redis_store import RedisRoomStore
from .services.room_registry import RoomRegistry
from .services.store import InMemoryRoomStore, RoomStore
from .services.watch_party import WatchPartyService

# Initialize logging
logger = setup_logging()


def build_store(kind: str = PERSISTENCE) -> Optional[RoomStore]:
    """Build the configured room store, or None for memory-only operation."""
    if kind == "memory":
        return InMemoryRoomStore()
    if kind == "redis":
        return RedisRoomStore.from_url(REDIS_URL)
    return None


async def _connect_store(store: Optional[RoomStore]) -> Optional[RoomStore]:
    ping = getattr(store, "ping", None)
    if ping is None:
        return store
    try:
        await ping()
        logger.info("💾 Database persistence enabled")
        return store
    except Exception as e:
        logger.error(f"⚠️ Store connection failed, using in-memory storage only: {e}")
        return None


def create_app(sio: socketio.AsyncServer, store: Optional[RoomStore] = None,
               room_timeout: float = ROOM_TIMEOUT, cleanup_interval: float = ROOM_CLEANUP_INTERVAL) -> FastAPI:
    """Create the FastAPI app; services are built in its lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        active_store = await _connect_store(store)
        registry = RoomRegistry(store=active_store, room_timeout=room_timeout)
        service = WatchPartyService(sio, registry)
        cleanup = CleanupScheduler(registry, interval=cleanup_interval, idle_timeout=room_timeout)

        app.state.registry = registry
        app.state.service = service
        app.state.socket_handler = SocketEventHandler(sio, service)
        app.state.cleanup = cleanup
        cleanup.start()

        logger.info(f"🚀 {APP_NAME} startup completed")
        logger.info(f"🏠 Rooms are cleaned up after {room_timeout / 60:g} minutes of inactivity")

        yield

        # Shutdown
        logger.info(f"🛑 {APP_NAME} shutting down")
        await cleanup.stop()
        await registry.close()
        if active_store is not None:
            await active_store.close()

    app = FastAPI(
        title=APP_NAME,
        description="Watch party rooms with synchronized playback and chat",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(rooms_router)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error(f"❌ Server error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    @app.get("/")
    async def index():
        """Describe the service and its realtime events."""
        return {
            "service": APP_NAME,
            "version": VERSION,
            "status": "running",
            "endpoints": {
                "GET /health": "Health check endpoint",
                "GET /api/stats": "Room statistics",
                "GET /api/rooms": "Get active rooms (dev only)",
                "POST /api/rooms": "Create a new room",
                "GET /api/room?id=": "Get a room snapshot",
                "POST /api/room/{roomId}/message": "Send a chat message",
                "POST /api/room/{roomId}/playback": "Update playback state",
                "POST /api/room/{roomId}/kick": "Kick a participant (host only)",
                "POST /api/room/{roomId}/transfer-host": "Transfer host (host only)",
            },
            "websocket": {
                "events": {
                    "join-room": "Join a watch party room",
                    "leave-room": "Leave current room",
                    "send-message": "Send chat message",
                    "update-playback": "Update playback state",
                    "kick-participant": "Kick a participant (host only)",
                    "transfer-host": "Transfer host to another participant",
                }
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        registry = getattr(request.app.state, "registry", None)
        return {
            "status": "ok",
            "service": APP_NAME,
            "version": VERSION,
            "activeRooms": len(registry) if registry is not None else 0,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


# Create Socket.IO server
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins=CORS_ALLOWED_ORIGINS,
    logger=DEBUG,
    engineio_logger=DEBUG,
)

app = create_app(sio, store=build_store())

# Combine Socket.IO with FastAPI
socket_app = socketio.ASGIApp(sio, app)

logger.info(f"🎬 {APP_NAME} v{VERSION} initialized")


if __name__ == "__main__":
    import uvicorn
    from .config import HOST, PORT

    logger.info(f"🎬 Starting {APP_NAME} server...")
    logger.info(f"🌐 Server will be available at: http://{HOST}:{PORT}")

    uvicorn.run(
        "watchparty.main:socket_app",
        host=HOST,
        port=PORT,
        reload=DEBUG,
        log_level="debug" if DEBUG else "info",
    )
