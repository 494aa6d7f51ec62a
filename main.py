"""
VirdisPay Fiat Conversion - Main Application Entry Point

This module initializes the FastAPI application and sets up the core routing.
It serves the merchant-facing fiat conversion API: converting received
crypto payments into fiat payouts, with rate caching, fee computation and
conversion tracking.
"""

import structlog
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.exceptions import HTTPException as StarletteHTTPException

from api import routes, webhooks
from api.middleware import log_api_entry
from conversion.errors import ConversionError, ValidationError
from conversion.rates import RateCache
from core.audit import AuditMiddleware
from core.dependencies import clear_settings, get_settings, init_settings
from core.logging import configure_logging
from core.metrics import add_metrics_auth_middleware, init_metrics
from core.settings import Settings
from core.tracing import init_tracer
from db.session import init_db
from payments.payout import build_payout_provider
from payments.pricing import CoinGeckoPricingProvider

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI application startup and shutdown events."""
    # Startup
    init_settings()
    settings = get_settings()

    init_tracer(settings.OTEL_SERVICE_NAME)
    init_db(settings)

    app.state.rate_cache = RateCache(
        CoinGeckoPricingProvider(
            base_url=settings.PRICING_API_URL,
            timeout=settings.PRICING_TIMEOUT_SECONDS,
        ),
        staleness_seconds=settings.RATE_STALENESS_SECONDS,
    )
    app.state.payout_provider = build_payout_provider(settings)
    log.info(
        "app.started",
        payout_provider=settings.PAYOUT_PROVIDER,
        environment=settings.ENVIRONMENT,
    )

    yield
    # Shutdown
    clear_settings()


app = FastAPI(
    title="VirdisPay Fiat Conversion",
    description="""
    ## Crypto-to-Fiat Conversion for Merchants

    Converts crypto payments received by cannabis and hemp merchants into fiat bank payouts.

    ### Key Features:
    - **Live Rates**: Batched spot prices for USDC, USDT, DAI, ETH and BTC with a 5 minute cache
    - **Transparent Fees**: 0.5% conversion fee plus flat network and banking fees
    - **Auto-Conversion**: Merchant policy with threshold, limits and per-asset allowlist
    - **Tracking**: Conversion lifecycle, payout details, history and statistics
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Initialize FastAPI instrumentation
FastAPIInstrumentor.instrument_app(app)

# Initialize Prometheus metrics
init_metrics(app)

# Add metrics authentication middleware (for production)
add_metrics_auth_middleware(app)

# Add logging middleware first
app.middleware("http")(log_api_entry)

# Add audit middleware
app.add_middleware(AuditMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.exception_handler(ConversionError)
async def conversion_error_handler(request: Request, exc: ConversionError):
    content = {"success": False, "error": exc.message}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request",
            "errors": [
                {
                    "field": ".".join(str(part) for part in err["loc"][1:]),
                    "message": err["msg"],
                }
                for err in exc.errors()
            ],
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    log.error("api.unhandled_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


@app.get("/")
async def root():
    """Root endpoint providing API information."""
    return {
        "name": "VirdisPay Fiat Conversion",
        "version": "1.0.0",
        "api_documentation": {
            "swagger_ui": "/docs",
            "redoc": "/redoc",
            "openapi_spec": "/openapi.json",
        },
        "endpoints": {
            "settings": "/api/v1/fiat-conversion/settings",
            "convert": "/api/v1/fiat-conversion/convert/{payment_id}",
            "history": "/api/v1/fiat-conversion/history",
            "stats": "/api/v1/fiat-conversion/stats",
            "rates": "/api/v1/fiat-conversion/rates",
            "estimate": "/api/v1/fiat-conversion/estimate",
            "payment_webhook": "/api/v1/webhook/payment-completed",
            "health": "/health",
            "metrics": "/metrics",
        },
    }


@app.get("/health")
async def health(settings: Settings = Depends(get_settings)):
    """Health check endpoint alias."""
    return await health_check(settings)


@app.get("/healthz")
async def health_check(settings: Settings = Depends(get_settings)):
    """Health check endpoint to verify API status."""
    db_type = (
        "PostgreSQL" if settings.DATABASE_URL.startswith("postgresql") else "SQLite"
    )
    return {
        "status": "ok",
        "app_name": settings.APP_NAME,
        "database": db_type,
        "environment": settings.ENVIRONMENT,
        "payout_provider": settings.PAYOUT_PROVIDER,
    }


# Include routers under a single versioned prefix
API_PREFIX = "/api/v1"

app.include_router(routes.router, prefix=API_PREFIX)
app.include_router(webhooks.router, prefix=API_PREFIX, tags=["webhooks"])


def main():
    configure_logging()
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
