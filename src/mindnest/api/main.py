"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mindnest.api.routes import sync as sync_routes
from mindnest.db.engine import create_schema, get_engine


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables and apply column migrations (idempotent)
        create_schema(get_engine())
        yield

    app = FastAPI(
        title="Mindnest API",
        description="Local review store and server sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
