from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

try:
    from .config import APP_NAME, setup_logging
    from .db import init_db
    from .ranking_view_repo import close_pg_pool
    from .routes import router
except ImportError:
    from config import APP_NAME, setup_logging
    from db import init_db
    from ranking_view_repo import close_pg_pool
    from routes import router


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    yield
    close_pg_pool()


def create_app() -> FastAPI:
    app = FastAPI(title=APP_NAME, lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()
