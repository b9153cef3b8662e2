"""
Payroll Engine - FastAPI Application Entry Point

Serves the payroll API under /api/v1/payroll. Batches can also run in the
Celery worker (payroll_engine.tasks).
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payroll_engine.config import settings
from payroll_engine.database import close_db, init_db
from payroll_engine.routers import payroll
from payroll_engine.utils.error_handling import setup_exception_handlers

API_VERSION = "0.1.0"

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables in development and close the pool on shutdown."""
    logger.info(f"Starting {settings.app_name} ({settings.app_env})")
    logger.info(
        f"Batch concurrency: {settings.payroll_batch_concurrency}, "
        f"default frequency: {settings.payroll_default_frequency}"
    )

    if settings.is_development:
        await init_db()
        logger.info("Payroll tables created")

    logger.info(f"Mail provider: {settings.email_provider} (delivered by the Celery worker)")

    yield

    await close_db()
    logger.info(f"{settings.app_name} stopped, database connections closed")


app = FastAPI(
    title=settings.app_name,
    description="Payroll computation and approval workflow engine",
    version=API_VERSION,
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)


@app.get("/api")
async def api_info():
    return {
        "name": settings.app_name,
        "version": API_VERSION,
        "environment": settings.app_env,
        "currency": settings.payroll_currency,
        "api_docs": "/api/docs" if settings.is_development else "disabled",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


app.include_router(payroll.router, prefix="/api/v1/payroll", tags=["Payroll"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
