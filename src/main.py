import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import settings
from src.database import close_mongo_connection, connect_to_mongo
from src.routers.analysis import router as analysis_router
from src.routers.health import router as health_router
from src.services.orchestrator import get_orchestrator
from src.services.resource_manager import MemoryMonitor
from src.services.result_store import SessionResultStore

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.persist_results:
        await connect_to_mongo()
        await SessionResultStore().ensure_indexes()

    orchestrator = get_orchestrator()
    monitor = MemoryMonitor.from_settings()
    monitor.register_cleanup(orchestrator.diagnostics.remove_expired)
    monitor.register_cleanup(orchestrator.cleanup_old_sessions)
    app.state.memory_monitor = monitor

    monitor.start_monitoring()
    orchestrator.start_sweeper()
    LOGGER.info("%s started (env=%s)", settings.app_name, settings.app_env)
    try:
        yield
    finally:
        await monitor.stop_monitoring()
        await orchestrator.shutdown()
        if settings.persist_results:
            await close_mongo_connection()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="API for collecting Google Maps reviews and scoring how trustworthy they are.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(analysis_router)
