"""
FastAPI application for the News RAG Chat backend.

HTTP endpoints for sessions, chat and cache administration, plus the /ws
real-time channel. Services live in a ServiceContainer stored on app.state;
the lifespan opens it, runs the periodic session sweeper and closes it.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cache import CacheUnavailableError
from config import AppConfig, get_config
from connection import ServiceContainer
from logger import get_logger, log_context
from models import ChatRequest, ChatResponse, HistoryResponse, SessionCreatedResponse
from session_store import SessionStore, SessionStoreError

logger = get_logger(__name__)

SERVICE_NAME = "News RAG Chat API"
VERSION = "1.0.0"


async def sweep_sessions(session_store: SessionStore, interval: int) -> None:
    """Clear idle sessions every `interval` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await session_store.cleanup_expired_sessions()
        except SessionStoreError as e:
            logger.error(f"Session sweep failed: {e}")


def _container(request: Request) -> ServiceContainer:
    return request.app.state.container


def _present(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


def create_app(container: Optional[ServiceContainer] = None, config: Optional[AppConfig] = None) -> FastAPI:
    """
    Build the application.

    Args:
        container: Pre-built services (tests); built from config at startup when None
        config: Application configuration; defaults to get_config()
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"Starting {SERVICE_NAME}")
        logger.info("=" * 60)

        if app.state.container is None:
            app.state.container = ServiceContainer.from_config(config)
        services: ServiceContainer = app.state.container
        await services.open()

        sweeper = None
        if config.session_cleanup_interval > 0:
            sweeper = asyncio.create_task(
                sweep_sessions(services.session_store, config.session_cleanup_interval)
            )

        yield

        logger.info("Shutting down")
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        await services.close()

    app = FastAPI(
        title=SERVICE_NAME,
        description="RAG-powered chat over recent news articles",
        version=VERSION,
        lifespan=lifespan
    )
    app.state.container = container
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all uncaught exceptions."""
        logger.error(
            f"Unhandled exception: {str(exc)}",
            path=request.url.path,
            method=request.method,
            exc_info=True
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc) if config.debug else None,
                "status_code": 500
            }
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all HTTP requests with timing; service logs carry the request id."""
        start_time = time.time()

        with log_context(request_id=str(uuid.uuid4())[:8]):
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"Request failed: {str(e)}",
                    method=request.method,
                    path=request.url.path,
                    duration_ms=round((time.time() - start_time) * 1000, 2)
                )
                raise

            logger.request(
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=(time.time() - start_time) * 1000
            )
        return response

    @app.get("/")
    async def root():
        return {
            "message": SERVICE_NAME,
            "version": VERSION,
            "status": "running",
            "docs": "/docs"
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Live status of the cache, the vector index and the generator."""
        return await _container(request).health_check()

    @app.post("/api/session")
    async def create_session(request: Request):
        session_id = str(uuid.uuid4())
        try:
            await _container(request).session_store.create_session(session_id)
        except SessionStoreError as e:
            logger.error(f"Error creating session: {e}")
            raise HTTPException(status_code=500, detail="Failed to create session")
        return SessionCreatedResponse(session_id=session_id).to_payload()

    @app.get("/api/session/{session_id}/history")
    async def get_history(session_id: str, request: Request):
        try:
            entries = await _container(request).session_store.get_session_history(session_id)
        except SessionStoreError as e:
            logger.error(f"Error getting history: {e}", session_id=session_id)
            raise HTTPException(status_code=500, detail="Failed to get history")
        return HistoryResponse.from_entries(entries)

    @app.delete("/api/session/{session_id}")
    async def clear_session(session_id: str, request: Request):
        try:
            await _container(request).session_store.clear_session(session_id)
        except SessionStoreError as e:
            logger.error(f"Error clearing session: {e}", session_id=session_id)
            raise HTTPException(status_code=500, detail="Failed to clear session")
        return {"message": "Session cleared successfully"}

    @app.post("/api/chat", response_model=ChatResponse)
    async def chat(body: ChatRequest, request: Request) -> ChatResponse:
        """
        Answer a message within a session.

        Raises:
            HTTPException: 400 when message or sessionId is missing or blank,
                500 when the exchange cannot be recorded
        """
        if not _present(body.message) or not _present(body.session_id):
            logger.warning("Chat request missing message or sessionId")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Message and sessionId are required"
            )

        logger.info(
            "Chat request received",
            message_length=len(body.message),
            session_id=body.session_id
        )
        try:
            entry = await _container(request).rag_service.chat(body.message, body.session_id)
        except SessionStoreError as e:
            logger.error(f"Chat error: {e}", session_id=body.session_id)
            raise HTTPException(status_code=500, detail="Failed to process message")
        return ChatResponse(response=entry.bot)

    @app.get("/api/sessions")
    async def list_sessions(request: Request):
        try:
            sessions = await _container(request).session_store.list_active_sessions()
        except SessionStoreError as e:
            logger.error(f"Error listing sessions: {e}")
            raise HTTPException(status_code=500, detail="Failed to list sessions")
        return {
            "sessions": [session.to_payload() for session in sessions],
            "count": len(sessions)
        }

    @app.post("/api/sessions/cleanup")
    async def cleanup_sessions(request: Request):
        try:
            cleaned = await _container(request).session_store.cleanup_expired_sessions()
        except SessionStoreError as e:
            logger.error(f"Error cleaning up sessions: {e}")
            raise HTTPException(status_code=500, detail="Failed to clean up sessions")
        return {"cleanedCount": cleaned}

    @app.get("/api/cache/stats")
    async def cache_stats(request: Request):
        try:
            return await _container(request).rag_service.get_cache_stats()
        except CacheUnavailableError as e:
            logger.error(f"Error getting cache stats: {e}")
            raise HTTPException(status_code=503, detail="Cache unavailable")

    @app.delete("/api/cache")
    async def clear_cache(request: Request):
        try:
            cleared = await _container(request).rag_service.clear_cache()
        except CacheUnavailableError as e:
            logger.error(f"Error clearing cache: {e}")
            raise HTTPException(status_code=503, detail="Cache unavailable")
        return {"cleared": cleared}

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        await websocket.app.state.container.gateway.handle(websocket)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(
        "app:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level=config.log_level.lower()
    )
