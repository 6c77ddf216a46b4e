"""Tilepack API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import get_config
from .routers import maps


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    config = get_config()
    config.ensure_directories()

    yield

    # Shutdown
    maps.shutdown_service()


app = FastAPI(
    title="Tilepack API",
    description="API for generating chunked offline map packs",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - allow all origins in development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(maps.router, prefix="/api/maps", tags=["maps"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}


@app.get("/api/config")
async def get_api_config():
    """Get API configuration (non-sensitive)."""
    config = get_config()
    return {
        "data_dir": str(config.data_dir),
        "chunk_size": config.chunk_size,
        "concurrency": config.concurrency,
        "default_min_zoom": config.default_min_zoom,
        "default_max_zoom": config.default_max_zoom,
        "default_provider": config.default_provider.value,
        "has_thunderforest_api_key": bool(config.thunderforest_api_key),
    }
