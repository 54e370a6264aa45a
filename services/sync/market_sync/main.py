"""FastAPI application entry point.

Market Sync API - resale marketplace data sync (StockX, Alias, eBay).
"""

from contextlib import AsyncExitStack, asynccontextmanager
from collections.abc import AsyncGenerator
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from market_sync.routes import api_router
from market_sync.runtime import market_runtime
from market_sync.settings import get_settings

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Opens the store, Redis and provider adapters. A startup failure is logged
    and the app still serves /health (store-backed routes answer 503).
    """
    settings = get_settings()
    async with AsyncExitStack() as stack:
        try:
            runtime = await stack.enter_async_context(market_runtime(settings))
        except Exception:
            logger.exception("Runtime init failed")
        else:
            app.state.store = runtime.store
            app.state.providers = runtime.providers
            logger.info(
                f"Market Sync ready (store={settings.store_backend}, "
                f"providers={[p.value for p in runtime.providers]}, redis={runtime.redis_ok})"
            )
        yield
        app.state.store = None
        app.state.providers = {}


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Resale market-data sync API",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handler for structured error format
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler returning structured error format."""
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": str(exc) if settings.debug else "Internal server error",
                    "detail": None,
                }
            },
        )

    # Health check endpoint
    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, bool]:
        """Health check endpoint."""
        return {"ok": True}

    # Include API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "market_sync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
