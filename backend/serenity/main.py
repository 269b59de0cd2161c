"""
Serenity — Main FastAPI Application

Crowd-sourced AI-channel labeling and classification service
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from serenity.core.config import get_settings
from serenity.core.database import close_db, init_db
from serenity.core.errors import SerenityError

settings = get_settings()

# ── Logging ──────────────────────────────────────────────────────────────

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
)

logger = structlog.get_logger()


# ── Lifespan ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    logger.info("Starting Serenity", version=settings.app_version)

    await init_db()

    from serenity.api.deps import get_fallback_dataset
    dataset = get_fallback_dataset()
    dataset.load()

    if not settings.labeler_token:
        logger.warning("SERENITY_LABELER_TOKEN is not set; labeler endpoints will reject every request")

    logger.info(
        "Serenity ready",
        fallback_channels=len(dataset),
        cache_ttl=settings.classification_cache_ttl_seconds,
    )

    yield

    await close_db()
    logger.info("Shutting down Serenity")


# ── App ──────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Serenity",
    description="Crowd-sourced AI channel labeling and classification",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.exception_handler(SerenityError)
async def serenity_error_handler(request: Request, exc: SerenityError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ── Routes ───────────────────────────────────────────────────────────────

from serenity.api.routes import channels, classification, labeler, overrides

app.include_router(labeler.router, prefix=settings.api_prefix)
app.include_router(classification.router, prefix=settings.api_prefix)
app.include_router(overrides.router, prefix=settings.api_prefix)
app.include_router(channels.router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {
        "name": "Serenity",
        "description": "Crowd-sourced AI channel labeling and classification",
        "version": settings.app_version,
        "classifications": ["ai_generated", "human_created", "ai_assisted", "mixed", "unknown"],
        "resolution_tiers": ["override", "consensus", "fallback"],
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "version": settings.app_version}
