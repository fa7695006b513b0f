import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from config import settings
from engine.errors import RoomError
from engine.state_machine import RoomStateMachine
from services.room_cleanup import run_cleanup_loop
from services.room_store import RoomStore, build_room_store

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


def create_app(store: Optional[RoomStore] = None) -> FastAPI:
    """Build the app. Tests pass an in-memory store; production builds one from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🕵️ Spy word backend starting up...")
        app.state.store = store or build_room_store(settings)
        app.state.machine = RoomStateMachine.from_settings(settings)
        cleanup = None
        if settings.room_ttl_hours > 0:
            cleanup = asyncio.create_task(
                run_cleanup_loop(
                    app.state.store,
                    settings.room_ttl_hours,
                    settings.room_cleanup_interval_seconds,
                )
            )
        yield
        if cleanup is not None:
            cleanup.cancel()
            try:
                await cleanup
            except asyncio.CancelledError:
                pass
        app.state.store.close()
        logger.info("Backend shutting down.")

    app = FastAPI(
        title="Spy Word",
        version="0.1.0",
        description="Real-time party word game: find the spies who don't know the secret word",
        lifespan=lifespan,
    )

    origins = list(settings.allowed_origins)
    if settings.extra_origin:
        origins.append(settings.extra_origin)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(RoomError)
    async def room_error_handler(request: Request, exc: RoomError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "spy-word", "version": "0.1.0"}

    from routers.room_router import router as room_router
    from routers.ws_router import router as ws_router

    app.include_router(room_router, prefix="/api")
    app.include_router(ws_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
