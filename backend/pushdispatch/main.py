"""Main FastAPI application for push dispatch."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import is_push_configured, settings
from .database import async_session, close_db, init_db
from .errors import OwnershipError, PushDispatchError, TokenNotFoundError, ValidationError
from .routers import devices_router, push_router
from .services.cleanup import TokenCleanupService
from .services.dispatcher import Dispatcher
from .services.failure_policy import FailurePolicy
from .services.gateway import build_gateway
from .services.registry import TokenRegistry
from .services.token_store import SQLAlchemyTokenStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    OwnershipError: 403,
    TokenNotFoundError: 404,
}


def build_services(app: FastAPI) -> None:
    """Wire store, registry, gateway and dispatcher onto ``app.state``."""
    policy = FailurePolicy.from_settings(settings)
    registry = TokenRegistry(
        SQLAlchemyTokenStore(async_session),
        policy=policy,
        token_min_length=settings.token_min_length,
        token_max_length=settings.token_max_length,
    )
    gateway = build_gateway(settings)

    app.state.registry = registry
    app.state.gateway = gateway
    app.state.dispatcher = Dispatcher.from_settings(settings, registry, gateway)
    app.state.cleanup = TokenCleanupService.from_settings(settings, registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting push dispatch service")

    await init_db()
    logger.info("Database initialized")

    build_services(app)
    if settings.cleanup_enabled:
        app.state.cleanup.start()

    yield

    app.state.cleanup.stop()
    await app.state.gateway.close()
    await close_db()
    logger.info("Shutdown complete")


async def handle_push_error(request: Request, exc: PushDispatchError):
    status_code = 400
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code == 400:
        logger.warning(f"Unhandled push error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Push Dispatch",
        description="Device token registry and push notification dispatch",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PushDispatchError, handle_push_error)

    app.include_router(devices_router)
    app.include_router(push_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "push_enabled": settings.push_enabled,
            "push_configured": is_push_configured(),
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
