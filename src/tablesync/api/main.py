"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlmodel import Session

from tablesync.api.middleware import PermissiveCORSMiddleware, register_error_handlers
from tablesync.api.routes import configs as config_routes
from tablesync.api.routes import jobs as job_routes
from tablesync.api.routes import sync as sync_routes
from tablesync.db.engine import get_engine, init_db
from tablesync.sync.configs import init_default_configs


def create_app(engine=None) -> FastAPI:
    """Build and return the FastAPI app.

    Args:
        engine: Engine to serve from; defaults to the configured one.
    """

    engine = engine or get_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables and seed default configs on startup (idempotent)
        init_db(engine)
        with Session(engine) as s:
            init_default_configs(s)
        yield

    app = FastAPI(
        title="Table Sync API",
        description="Warehouse table sync jobs: status and control",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(PermissiveCORSMiddleware)
    register_error_handlers(app)

    app.include_router(job_routes.router, prefix="/jobs", tags=["jobs"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(config_routes.router, prefix="/configs", tags=["configs"])

    return app
