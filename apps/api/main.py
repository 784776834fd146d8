"""
Recruiter CV API - FastAPI Backend
Credit-gated resume unlocks, bucket organization and search history.
"""

import asyncio
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    billing,
    cv_search,
    buckets,
)
from services.search_history import resample_saved_searches_service

logging.basicConfig(level=settings.LOG_LEVEL)


async def _periodic_search_trend_sampling() -> None:
    interval_minutes = max(int(settings.SEARCH_TREND_SAMPLE_INTERVAL_MINUTES), 0)
    if interval_minutes <= 0:
        return
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            result = await resample_saved_searches_service()
            print(
                f"📈 Search trend sampling: sampled={result.get('sampled', 0)} "
                f"failed={result.get('failed', 0)}"
            )
        except Exception as exc:
            print(f"⚠️ Search trend sampling tick failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Recruiter CV API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    sampling_task = None
    if settings.SEARCH_TREND_SAMPLING_ENABLED and int(settings.SEARCH_TREND_SAMPLE_INTERVAL_MINUTES) > 0:
        sampling_task = asyncio.create_task(_periodic_search_trend_sampling())
        print(
            "📅 Search trend sampling loop enabled "
            f"(every {int(settings.SEARCH_TREND_SAMPLE_INTERVAL_MINUTES)} min)."
        )
    yield
    # Shutdown
    if sampling_task is not None:
        sampling_task.cancel()
        try:
            await sampling_task
        except asyncio.CancelledError:
            pass
    print("👋 Shutting down API...")


app = FastAPI(
    title="Recruiter CV API",
    description="Search candidate CVs, unlock profiles with credits and organize them into buckets",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(cv_search.router, prefix="/cv-search", tags=["CV Search"])
app.include_router(buckets.router, prefix="/buckets", tags=["Buckets"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Recruiter CV API",
        "version": "0.1.0",
        "status": "running"
    }
