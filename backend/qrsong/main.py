from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import health
from .cache.redis import redis
from .core.config import get_settings
from .core.logging import setup_logging
from .db.session import dispose_engine, init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await redis.aclose()
    await dispose_engine()


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(
        settings.log_level,
        environment=settings.environment,
        secrets=[settings.spotify_client_secret, settings.rapid_api_key, settings.discogs_token],
    )
    app = FastAPI(
        title="QRSong Backend",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )
    app.include_router(health.router)
    return app


app = create_app()
