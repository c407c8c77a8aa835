# dentlink/main.py
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dentlink.api.deps import get_coordinator, get_session_factory
from dentlink.api.exception_handlers import register_exception_handlers
from dentlink.api.router import api_router
from dentlink.core.config import settings
from dentlink.db.init_db import create_schema
from dentlink.db.session import engine
from dentlink.services.settlement import SettlementRetryWorker

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logging.getLogger("dentlink").setLevel(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(api_router, prefix=settings.API_V1_STR)

_worker: Optional[SettlementRetryWorker] = None


@app.on_event("startup")
def _startup() -> None:
    global _worker
    if settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        # local runs; MySQL schemas come from `python -m dentlink.db.init_db`
        create_schema(engine)

    if settings.SETTLEMENT_RETRY_INTERVAL_SECONDS > 0:
        coordinator = get_coordinator(get_session_factory())
        _worker = SettlementRetryWorker(
            coordinator, settings.SETTLEMENT_RETRY_INTERVAL_SECONDS)
        _worker.start()


@app.on_event("shutdown")
def _shutdown() -> None:
    if _worker is not None:
        _worker.stop()


# Health
@app.get("/")
def root():
    return {"message": "DentLink core API running", "version": "v1"}
