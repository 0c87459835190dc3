from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from fastapi import FastAPI

from lifesync.api.errors import register_exception_handlers
from lifesync.api.routes import connections, data, health, ingest, stats, sync
from lifesync.core.config import settings
from lifesync.core.logging import get_logger
from lifesync.services.ingestion_service import build_ingestion_service

log = get_logger("main")

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def run_migrations() -> None:
    """Bring the connection, secret, policy and run tables up to the latest revision."""
    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL must be set when STORAGE_BACKEND=sql")
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    command.upgrade(alembic_cfg, "head")
    log.info("Database schema is at head")


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info(
        f"Starting LifeSync in {settings.ENV.upper()} mode "
        f"(storage={settings.STORAGE_BACKEND}, docs={'on' if settings.docs_enabled else 'off'})"
    )
    if settings.uses_default_encryption_key:
        log.warning("ENCRYPTION_KEY is the development default; stored credentials are not protected")

    if settings.STORAGE_BACKEND == "sql":
        try:
            run_migrations()
        except Exception:
            log.exception("Schema migration failed; refusing to start")
            raise

    # Tests may install their own service graph before startup.
    service = getattr(app.state, "ingestion_service", None)
    if service is None:
        service = build_ingestion_service(settings)
        app.state.ingestion_service = service
    log.info(f"Ingestion service ready (storage: {settings.STORAGE_BACKEND})")

    if settings.SYNC_ENABLED:
        log.info(f"Starting sync scheduler (tick every {settings.SYNC_TICK_SECONDS}s)")
        service.scheduler.start()
    else:
        log.info("Scheduled sync is disabled (SYNC_ENABLED=false)")

    yield

    log.info("Stopping sync scheduler")
    await service.scheduler.stop()
    if service.oauth.http_client is not None:
        await service.oauth.http_client.aclose()
    log.info("LifeSync stopped")


app = FastAPI(
    title="LifeSync Ingestion Backend",
    description="Connects personal data providers, keeps them in sync and serves normalized life records",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    debug=settings.debug_enabled,
)

register_exception_handlers(app)

app.include_router(connections.router)
app.include_router(data.router)
app.include_router(health.router)
app.include_router(ingest.router)
app.include_router(stats.router)
app.include_router(sync.router)
