"""
FastAPI Main Application

Offer Lookup REST API: bulk property-offer uploads and property search.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from src.offerlookup import __version__
from src.offerlookup.api.dependencies import get_session_factory
from src.offerlookup.api.schemas import HealthCheck
from src.offerlookup.api.routers import auth, properties, stats, upload
from src.offerlookup.api.cache import get_cache_stats
from src.offerlookup.db.models import utcnow
from src.offerlookup.db.session import close_connections, health_check
from src.offerlookup.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("api_starting", version=__version__)
    yield
    await close_connections()
    logger.info("api_stopped")


# Create FastAPI app
app = FastAPI(
    title="Offer Lookup API",
    description="Bulk CSV/Excel import of property offers with progress tracking and search",
    version=__version__,
    debug=settings.debug,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(upload.router)
app.include_router(properties.router)
app.include_router(stats.router)


@app.get("/health", response_model=HealthCheck, tags=["health"])
async def health(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Health check endpoint.

    Returns:
        Health status with database and cache connectivity
    """
    database_status = "connected" if await health_check(session_factory) else "unavailable"

    cache_stats = get_cache_stats()
    cache_status = "connected" if cache_stats.get("available") else "unavailable"

    return HealthCheck(
        status="healthy" if database_status == "connected" else "degraded",
        version=__version__,
        database=database_status,
        cache=cache_status,
        timestamp=utcnow(),
    )


@app.get("/", tags=["root"])
async def root():
    """API information."""
    return {
        "name": "Offer Lookup API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "features": [
            "JWT Authentication",
            "Redis Caching",
            "Streaming CSV/Excel Import",
            "Upload Progress Events",
        ]
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.offerlookup.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
