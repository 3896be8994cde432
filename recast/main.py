"""
main.py — FastAPI Application Factory
=====================================
Re:cast game server: lobby REST, WebSocket intent gateway, bundled option
generator.

The factory accepts injected collaborators so tests can run the full app with
a fake option generator or a prepared store.

Usage:
    # Development mode (hot-reload)
    uvicorn recast.main:app --reload

    # Console script
    recast-server --port 8000 --redis-url redis://localhost:6379
"""

import argparse
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from recast.apps.ws.service import FanoutHub
from recast.core.config import Settings, get_settings, override_settings
from recast.core.database import LobbyStore, create_store
from recast.core.engine import LobbyEngine
from recast.core.errors import register_error_handlers
from recast.services.llm_client import LLMClient
from recast.services.option_client import OptionGeneratorClient

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    store: LobbyStore | None = None,
    generator=None,
    llm: LLMClient | None = None,
) -> FastAPI:
    """
    FastAPI application factory.

    Args:
        settings: defaults to get_settings()
        store: LobbyStore; built from settings when omitted
        generator: object with `async generate(prompt, player_count, creativity)`
        llm: upstream client for the bundled /api/options/generate endpoint
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ═══════════════════════════════════════════════════
        # STARTUP
        # ═══════════════════════════════════════════════════
        logger.info(f"🚀 Starting {settings.APP_NAME} v{settings.VERSION}")
        logger.info(f"📍 Environment: {settings.ENV}")
        logger.info(f"🗄️  Database Mode: {'In-Memory' if settings.USE_IN_MEMORY_DB else 'Redis'}")

        lobby_store = store or create_store(settings)
        hub = FanoutHub(queue_size=settings.SUBSCRIBER_QUEUE_SIZE)
        option_generator = generator or OptionGeneratorClient(
            settings.OPTION_GENERATOR_URL,
            api_key=settings.OPTION_GENERATOR_API_KEY,
            timeout=settings.GENERATION_TIMEOUT_SEC,
        )
        if not settings.LLM_API_KEY:
            logger.warning("⚠️  LLM_API_KEY not set - bundled option generator may be rejected upstream")

        engine = LobbyEngine(lobby_store, hub, option_generator, settings)
        app.state.settings = settings
        app.state.store = lobby_store
        app.state.hub = hub
        app.state.engine = engine
        app.state.llm = llm or LLMClient(
            settings.LLM_API_URL,
            api_key=settings.LLM_API_KEY,
            model=settings.LLM_MODEL,
            timeout=settings.GENERATION_TIMEOUT_SEC,
        )
        await engine.start()

        yield

        # ═══════════════════════════════════════════════════
        # SHUTDOWN
        # ═══════════════════════════════════════════════════
        logger.info("👋 Shutting down gracefully...")
        await hub.close_all()
        await engine.shutdown()
        await lobby_store.close()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        description="Re:cast — party game server",
        debug=settings.DEBUG,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # ═══════════════════════════════════════════════════
    # CORS Middleware
    # ═══════════════════════════════════════════════════
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_CREDENTIALS,
        allow_methods=settings.CORS_METHODS,
        allow_headers=settings.CORS_HEADERS,
    )

    # ═══════════════════════════════════════════════════
    # Request Timing Middleware
    # ═══════════════════════════════════════════════════
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}s"
        return response

    register_error_handlers(app)

    # ═══════════════════════════════════════════════════
    # Health Check Endpoint
    # ═══════════════════════════════════════════════════
    @app.get("/health", tags=["system"])
    def health_check():
        return {
            "status": "ok",
            "app": settings.APP_NAME,
            "version": settings.VERSION,
            "environment": settings.ENV,
            "db_mode": "in-memory" if settings.USE_IN_MEMORY_DB else "redis",
        }

    @app.get("/", tags=["system"])
    def root():
        return {
            "message": f"{settings.APP_NAME} API",
            "version": settings.VERSION,
            "docs": "/docs" if settings.DEBUG else "disabled",
        }

    # ═══════════════════════════════════════════════════
    # Routers
    # ═══════════════════════════════════════════════════
    from recast.apps.lobby.router import router as lobby_router
    from recast.apps.options.router import router as options_router
    from recast.apps.ws.router import router as ws_router

    app.include_router(lobby_router)
    app.include_router(options_router)
    app.include_router(ws_router)

    return app


# ═══════════════════════════════════════════════════
# Application Instance (uvicorn)
# ═══════════════════════════════════════════════════
app = create_app()


# ═══════════════════════════════════════════════════
# CLI Entry Point
# ═══════════════════════════════════════════════════

def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="recast-server", description="Re:cast game server")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Bind port")
    parser.add_argument("--redis-url", help="Use Redis at this URL instead of the in-memory store")
    parser.add_argument("--generator-url", help="Option generator endpoint")
    parser.add_argument("--idle-ttl", type=float, help="Seconds before an idle lobby is purged")
    return parser.parse_args(argv)


def run(argv=None) -> None:
    import uvicorn

    args = _parse_args(argv)
    overrides: dict = {}
    if args.host:
        overrides["HOST"] = args.host
    if args.port:
        overrides["PORT"] = args.port
    if args.redis_url:
        overrides["REDIS_URL"] = args.redis_url
        overrides["USE_IN_MEMORY_DB"] = False
    if args.generator_url:
        overrides["OPTION_GENERATOR_URL"] = args.generator_url
    if args.idle_ttl is not None:
        overrides["LOBBY_IDLE_TTL_SEC"] = args.idle_ttl
    settings = override_settings(**overrides) if overrides else get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("=" * 60)
    logger.info(f"🎮 {settings.APP_NAME}")
    logger.info(f"📡 Starting server at http://{settings.HOST}:{settings.PORT}")
    logger.info("=" * 60)

    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level="info" if settings.DEBUG else "warning",
    )


if __name__ == "__main__":
    run()
