import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from app.api.responses import error_response
from app.api.routes import components, health, narrative, polymarket, similarity, stock
from app.config import settings
from app.services.narrative.service import shutdown_narrative_service
from app.services.narrative.weights import resolve_weights

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO),
            ],
            traces_sample_rate=0.1,
            environment=settings.environment,
        )
        logger.info("Sentry initialized")

    # Fail fast on a misconfigured weight scheme.
    weights = resolve_weights(settings.narrative_weight_scheme)
    logger.info(
        "narrative.weights_validated",
        extra={"scheme": settings.narrative_weight_scheme, "components": sorted(weights)},
    )

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await shutdown_narrative_service()
    await polymarket.close_polymarket_client()
    await stock.close_market_data_client()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Narrative Index, history and company similarity for the Robotics Intelligence Globe",
    lifespan=lifespan,
    debug=settings.debug,
)

# Add CORS middleware
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

# Add security middleware
app.add_middleware(
    TrustedHostMiddleware, allowed_hosts=["*"] if settings.debug else settings.allowed_hosts
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    logger.info(f"{request.method} {request.url.path}")
    response = await call_next(request)
    logger.info(f"Response status: {response.status_code}")
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Answer invalid query parameters with the 400 envelope instead of FastAPI's 422."""
    details = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    logger.info("api.invalid_parameters", extra={"path": request.url.path, "errors": details})
    return error_response("Invalid request parameters", status_code=400, details=details)


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(narrative.router, prefix="/api", tags=["narrative"])
app.include_router(components.router, prefix="/api", tags=["components"])
app.include_router(similarity.router, prefix="/api", tags=["similarity"])
app.include_router(polymarket.router, prefix="/api", tags=["polymarket"])
app.include_router(stock.router, prefix="/api", tags=["stock"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.environment,
    }
