"""FX journal ingestion service: FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.api import email_inbound, sync, trades
from app.config import settings
from app.database import engine

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: verify DB connection when trades live in the database."""
    if settings.trade_store_backend == "database":
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connected successfully")
        except Exception as e:
            logger.error("Database connection failed: %s", e)
            raise
    else:
        logger.info("Using %s trade store", settings.trade_store_backend)
    yield
    await engine.dispose()
    logger.info("Database engine disposed")


app = FastAPI(
    title="FX Journal Ingest",
    description="Imports broker trade confirmation emails into the FX trading journal",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: restrict in production, allow localhost in development
_allowed_origins = (
    ["http://localhost:8000", "http://localhost:3000"]
    if settings.app_env == "development"
    else settings.allowed_hosts.split(",")
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key", "X-User-Id", "x-webhook-secret"],
)

app.include_router(email_inbound.router)
app.include_router(sync.router)
app.include_router(trades.router)


@app.get("/api")
async def api_root():
    return {
        "name": "FX Journal Ingest",
        "version": "0.1.0",
        "status": "running",
        "trade_store": settings.trade_store_backend,
    }
