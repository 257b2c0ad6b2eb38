"""
FastAPI application factory with lifespan management.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from amenities.api import routes
from amenities.db.session import engine, init_db
from amenities.errors import AmenityError
from amenities.logging_config import logger
from amenities.schemas import HealthResponse


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Starting Amenity Service")
    await init_db()
    logger.info("Database tables ensured")
    yield
    await routes._orchestrator.close()
    await engine.dispose()
    logger.info("Service shut down")


app = FastAPI(
    title="Amenity Discovery & Scoring Service",
    description=(
        "Nearby amenities for rental properties: proximity search, livability "
        "scoring, multi-provider discovery, moderation and auto-population."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AmenityError)
async def amenity_error_handler(request: Request, exc: AmenityError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Register API routes
app.include_router(routes.router, prefix="/api/v1/amenities", tags=["Amenities"])


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Health check endpoint."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "connected"
    except (SQLAlchemyError, OSError) as exc:
        logger.warning(f"Health check could not reach the database: {exc}")
        db_status = "disconnected"

    return HealthResponse(
        status="healthy" if db_status == "connected" else "degraded",
        version="1.0.0",
        database=db_status,
    )


@app.get("/", tags=["System"])
async def root():
    return {
        "service": "Amenity Discovery & Scoring",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    from amenities.config import get_settings

    settings = get_settings()
    uvicorn.run("amenities.main:app", host=settings.host, port=settings.port, reload=settings.debug)
