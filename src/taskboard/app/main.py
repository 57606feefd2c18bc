from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI

from taskboard.app.middleware.access_log import AccessLogMiddleware
from taskboard.app.routes import tasks
from taskboard.config import Settings, load_settings
from taskboard.infra.db.kv_store import Base, SQLiteKeyValueStore
from taskboard.infra.db.sqlite import make_sqlite_url, make_engine, make_sessionmaker
from taskboard.infra.providers.local import LocalTaskProvider
from taskboard.infra.providers.remote import RecordApiClient, RemoteTaskProvider, make_http_client
from taskboard.observability.logging import setup_logging
from taskboard.services.task_engine import TaskEngine

logger = logging.getLogger("taskboard.system")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Composition root. Run with `uvicorn taskboard.app.main:create_app --factory`."""
    settings = settings or load_settings()
    setup_logging(settings.log_level, settings.log_dir)
    logger.info("system.start", extra={"category": "system", "event": "system.start", "provider": settings.provider})

    db_engine = None
    if settings.provider == "remote":
        http = make_http_client(
            settings.remote_url,
            project_id=settings.project_id,
            public_key=settings.public_key,
            timeout=settings.timeout_seconds,
        )
        provider = RemoteTaskProvider(RecordApiClient(http, settings.remote_table))
    else:
        # --- SQLite wiring ---
        db_engine = make_engine(make_sqlite_url(settings.db_path))
        provider = LocalTaskProvider(SQLiteKeyValueStore(make_sessionmaker(db_engine)), settings.storage_key)

    engine = TaskEngine(provider, timeout_seconds=settings.timeout_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if db_engine is not None:
            async with db_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info(
                "db.ready",
                extra={"category": "system", "event": "db.ready", "db_path": settings.db_path},
            )
        result = await engine.initialize()
        logger.info(
            "tasks.ready",
            extra={"category": "system", "event": "tasks.ready", "ok": result.ok, "count": len(engine.tasks)},
        )
        try:
            yield
        finally:
            if isinstance(provider, RemoteTaskProvider):
                await provider.aclose()
            if db_engine is not None:
                await db_engine.dispose()
            logger.info("system.stop", extra={"category": "system", "event": "system.stop"})

    app = FastAPI(title="Taskboard", lifespan=lifespan)
    app.add_middleware(AccessLogMiddleware)
    app.dependency_overrides[tasks.get_engine] = lambda: engine

    # Routers
    app.include_router(tasks.router)

    @app.get("/health")
    def health():
        return {"status": "ok", "provider": settings.provider}

    return app
