from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api import health, memos, messages, presence, tasks
from app.core.config import settings, logger
from app.core.exceptions import RealtimeError
from app.core.middleware import (
    RequestContextMiddleware,
    global_exception_handler,
    realtime_exception_handler,
    validation_exception_handler,
)
from app.db.database import create_tables
from app.realtime import relay, sio


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await create_tables()
    logger.info(f"{settings.APP_NAME} started ({settings.APP_ENV})")
    yield
    # Shutdown: let background delivered-status updates finish
    await relay.drain()


app = FastAPI(
    title="OfficeHub Real-time API",
    description="Messaging, memos, task updates and presence over Socket.IO and REST",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RealtimeError, realtime_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(messages.router, prefix="/api/messages", tags=["Messages"])
app.include_router(memos.router, prefix="/api/memos", tags=["Memos"])
app.include_router(tasks.router, prefix="/api/tasks", tags=["Tasks"])
app.include_router(presence.router, prefix="/api/presence", tags=["Presence"])
app.include_router(health.router, prefix="", tags=["Health"])

# Socket.IO shares the port; everything outside SOCKETIO_PATH falls through to FastAPI
socket_app = socketio.ASGIApp(sio, other_asgi_app=app, socketio_path=settings.SOCKETIO_PATH)
