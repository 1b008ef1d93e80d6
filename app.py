from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from backend import RoomRegistry, SessionStore
from connection import ConnectionHandler
from constants import CORS_ORIGINS, IDLE_TIMEOUT_SECONDS, LOG_FILE, LOG_LEVEL
from logging_config import get_logger, setup_logging
from relay import BroadcastRelay
from routers.rooms import rooms_router

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # All relay state lives in process memory for the lifetime of the app
    session_store = SessionStore()
    room_registry = RoomRegistry()
    app.state.relay = BroadcastRelay(session_store, room_registry)
    logger.info("Relay stores initialized")
    try:
        yield
    finally:
        await room_registry.clear()
        await session_store.clear()
        logger.info("Relay stores torn down")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/healthz")
async def healthz():
    return {"ok": True}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Relay endpoint. Clients pick their document with a join-room message after connecting."""
    handler = ConnectionHandler(websocket, websocket.app.state.relay, idle_timeout=IDLE_TIMEOUT_SECONDS)
    logger.info(f"WebSocket connection attempt, assigned connection id {handler.connection_id}")
    await handler.run()
