"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import banking
from api.banking import close_bank_sync_service
from database import init_db
from logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables on startup; close bank HTTP pools on shutdown."""
    try:
        init_db()
    except Exception:
        logger.error("Database initialization failed on startup", exc_info=True)
        raise
    yield
    close_bank_sync_service()


app = FastAPI(
    title="PHV Bank Sync",
    description="Bank account connections and transaction sync for PHV drivers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(banking.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
