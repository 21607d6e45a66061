"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from voicematrix.config import settings
from voicematrix.database import lifespan_db
from voicematrix.utils.logging import setup_logging

# Setup logging
setup_logging(debug=settings.debug, service=settings.app_name)

# Import routers
from voicematrix.api.usage import router as usage_router
from voicematrix.api.vapi_webhook import router as vapi_webhook_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    async with lifespan_db():
        yield


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Webhook-driven usage enforcement for Vapi voice assistants",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Include routers
app.include_router(vapi_webhook_router, tags=["Webhooks"])
app.include_router(usage_router, prefix="/usage", tags=["Usage"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
    }
