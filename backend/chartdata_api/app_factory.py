from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .db import init_db
from .error_handlers import register_error_handlers
from .routers import auth, data_requests
from .services.permissions import load_policy


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(settings: Settings) -> FastAPI:
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN001
        await init_db(settings)
        yield

    app = FastAPI(title="Chart Data API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    # Loaded once; a broken permissions file fails startup instead of the first request.
    app.state.permission_policy = load_policy(settings.permissions_file)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(auth.router, prefix="/api")
    app.include_router(data_requests.router, prefix="/api")

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    return app
