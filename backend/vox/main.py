"""
VOX FastAPI Application Entry Point.

Run with: uvicorn vox.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vox.api.routes import (
    agents,
    autopilot,
    conversation_ai,
    conversation_meta,
    dashboard,
    knowledge_bases,
    leadconnector,
    settings as settings_routes,
)
from vox.config import get_settings
from vox.db.session import engine
from vox.errors import register_exception_handlers

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    # Startup
    logger.info("Starting %s (%s)", settings.app_name, settings.environment)
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Conversation AI dashboard API: agents, autopilot and LeadConnector integration",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(agents.router)
app.include_router(settings_routes.router)
app.include_router(conversation_meta.router)
app.include_router(knowledge_bases.router)
app.include_router(conversation_ai.router)
app.include_router(autopilot.router)
app.include_router(leadconnector.router)
app.include_router(dashboard.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
