"""
Main FastAPI application for the portfolio chat service.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routes import auth, chat, inbox, realtime
from .services import get_services, initialize_services
from .middleware.metrics import MetricsMiddleware, metrics_endpoint
from chat.errors import ChatError, ChatValidationError
from config.settings import get_settings
from database import session as db_session

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info(f"{settings.app_name} starting up...")

    # Initialize database (if configured)
    if settings.database_url:
        try:
            await db_session.init_db(settings.database_url)
        except Exception as e:
            logger.warning(f"Database init failed (running without archive): {e}")

    services = get_services()
    await initialize_services()
    await services.seed_operator()
    logger.info(f"{settings.app_name} ready")
    yield
    logger.info(f"{settings.app_name} shutting down...")

    realtime.get_manager().disconnect_all()
    await services.shutdown()
    if db_session.is_initialized():
        await db_session.close_db()


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Map chat engine errors onto their HTTP status codes."""
    content = {"detail": str(exc)}
    if isinstance(exc, ChatValidationError) and exc.field:
        content["field"] = exc.field
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        description="Realtime support chat between site visitors and a single operator.",
        version=settings.api_version,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(ChatError, chat_error_handler)

    # --- Visitor chat ---
    app.include_router(chat.router, prefix="/api/v1", tags=["Chat"])

    # --- Auth ---
    app.include_router(auth.router, prefix="/api/v1", tags=["Auth"])

    # --- Operator inbox ---
    app.include_router(inbox.router, prefix="/api/v1", tags=["Inbox"])

    # --- Real-time ---
    app.include_router(realtime.router, prefix="/api/v1", tags=["Realtime"])

    # --- Prometheus metrics endpoint ---
    app.get("/metrics", tags=["Monitoring"])(metrics_endpoint)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "service": settings.app_name,
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
        }

    # Health check
    @app.get("/health")
    async def health():
        services = get_services()
        return {
            "status": "healthy" if services.is_ready else "degraded",
            "services": services.health(),
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
