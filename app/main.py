from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from typing import Optional

from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

# Database imports
from app.database import engine
from app import models

# Config
from app.config import settings
from app.errors import ArtifyError, UpstreamFailure
from app.rate_limit import limiter, rate_limit_exceeded_handler
from app.routers import auth, health, images, payments, support
from app.services.container import Services, build_services

# Setup Logger
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("artify")


# Lifespan events to handle startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Artify Ghibli starting up...")
    # Create DB tables
    models.Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")

    if app.state.services is None:
        app.state.services = build_services(settings)
    services: Services = app.state.services

    if services.token_store.ping():
        logger.info("Redis connected successfully")
    else:
        logger.warning("Redis unavailable. Token blacklisting will not work.")

    services.scheduler.start()
    services.scheduler.every(
        services.orchestrator.reap_stale_jobs,
        minutes=settings.reaper_interval_minutes,
        name="reap-stale-jobs",
    )
    try:
        services.orchestrator.recover()
    except Exception as e:
        logger.error(f"Job recovery failed: {e}")

    yield

    logger.info("Artify Ghibli shutting down...")
    services.shutdown()


def _error_response(exc: ArtifyError) -> JSONResponse:
    hide_details = settings.is_production and isinstance(exc, UpstreamFailure)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(include_details=not hide_details),
    )


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(ArtifyError)
    async def artify_error_handler(request: Request, exc: ArtifyError):
        if exc.status_code >= 500:
            cause = f" ({exc.original_error})" if exc.original_error else ""
            logger.error(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}{cause}")
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "InvalidInput",
                "message": "Request validation failed",
                "details": {"errors": jsonable_encoder(exc.errors(), exclude={"ctx", "input"})},
            },
        )

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.exception(f"Internal Server Error on {request.method} {request.url.path}")
        content = {"error": "InternalError", "message": "An unexpected error occurred."}
        if not settings.is_production:
            content["details"] = {"exception": exc.__class__.__name__}
        return JSONResponse(status_code=500, content=content)


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="Artify Ghibli API",
        description="Subscription-gated Ghibli-style image generation",
        version=health.VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PUT"],
        allow_headers=["Authorization", "Content-Type"],
    )

    register_exception_handlers(app)

    # Register all routers
    app.include_router(auth.router)
    app.include_router(payments.router)
    app.include_router(images.router)
    app.include_router(support.router)
    app.include_router(health.router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,  # Disable reload for production
        log_level="info",
    )
