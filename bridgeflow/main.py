from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import health, quotes, transfers
from .api.errors import register_error_handlers
from .config import settings
from .core.orchestrator import get_orchestrator
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_orchestrator().close()


# Create FastAPI app
app = FastAPI(
    title="Bridgeflow API",
    description="Cross-chain route acquisition, execution and status tracking",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
register_error_handlers(app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(quotes.router, tags=["Quotes"])
app.include_router(transfers.router, tags=["Transfers"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Bridgeflow API",
        "version": "0.1.0",
        "description": "Cross-chain route acquisition, execution and status tracking",
        "docs": "/docs",
        "health": "/healthz"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bridgeflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
