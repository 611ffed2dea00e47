from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Sequence

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.routers.simulations import router as simulations_router
from app.services.counts_consumer_runner import (
    shutdown_counts_consumer,
    start_counts_consumer,
)
from core.settings import get_settings
from db.session import engine


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await start_counts_consumer()
    yield
    await shutdown_counts_consumer()
    # Ensure DB connections are cleanly closed on shutdown
    await engine.dispose()


def create_app(allowed_origins: Sequence[str] | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        allowed_origins: Optional list of CORS origins to allow. If not provided,
            the local dashboard dev servers are allowed.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)

    cors_origins = list(
        allowed_origins
        or [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(simulations_router, prefix="/simulations", tags=["simulations"])

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
