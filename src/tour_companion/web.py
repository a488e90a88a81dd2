"""
FastAPI application exposing the passenger login verification endpoint.

The login service shares the reason codes of the offline resolver, so the
mobile client maps both paths through one table.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import click
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import CompanionConfig
from .login.results import LoginReason
from .login.service import AllowListAppCheckVerifier, PassengerLoginService, get_request_client_key
from .notifications.rate_limiter import RateLimiter
from .store.memory import InMemoryBackendStore

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

STATUS_CODES = {
    LoginReason.OK: 200,
    LoginReason.IDENTITY_INCOMPLETE: 200,
    LoginReason.INVALID_INPUT: 400,
    LoginReason.INVALID_CREDENTIALS: 401,
    LoginReason.TRY_AGAIN_LATER: 429,
    LoginReason.INTERNAL_ERROR: 500,
}


def build_login_service(config: CompanionConfig, rate_limiter: RateLimiter) -> PassengerLoginService:
    """Wire a login service against the configured backend snapshot."""
    if config.backend_snapshot_path:
        store = InMemoryBackendStore.from_json_file(config.backend_snapshot_path)
    else:
        logger.warning("No backend snapshot configured, starting with an empty booking directory")
        store = InMemoryBackendStore()

    return PassengerLoginService(
        directory=store,
        rate_limiter=rate_limiter,
        app_check=AllowListAppCheckVerifier(config.app_check_tokens),
        config=config,
    )


def create_app(config: Optional[CompanionConfig] = None,
               login_service: Optional[PassengerLoginService] = None,
               rate_limiter: Optional[RateLimiter] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Configuration, read from the environment if None
        login_service: Preconfigured login service (tests inject one)
        rate_limiter: Rate limiter whose sweep runs for the app's lifetime

    Returns:
        Configured FastAPI application
    """
    config = config or CompanionConfig.from_env()
    rate_limiter = rate_limiter or RateLimiter(config.rate_limit_sweep_interval_seconds)
    login_service = login_service or build_login_service(config, rate_limiter)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Tour Companion API")
        await rate_limiter.start()
        yield
        logger.info("Shutting down Tour Companion API")
        await rate_limiter.stop()

    app = FastAPI(
        title="Tour Companion API",
        description="Login verification for the tour companion mobile app",
        version=APP_VERSION,
        lifespan=lifespan
    )
    app.state.config = config
    app.state.rate_limiter = rate_limiter
    app.state.login_service = login_service

    @app.post("/api/login/verify")
    async def verify_login(request: Request):
        """
        Verify a booking reference and email.

        Returns:
            JSON body with ``valid`` and ``reason``, plus the resolved booking
            reference and tour identifiers on success
        """
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        client_key = get_request_client_key(
            request.headers, request.client.host if request.client else None)

        result = await request.app.state.login_service.verify(
            payload.get("bookingRef"),
            payload.get("email"),
            client_key=client_key,
            app_check_token=request.headers.get("x-firebase-appcheck"),
        )

        body = {"valid": result.success, "reason": result.reason.value}
        if result.success:
            body.update({
                "bookingRef": result.booking_ref,
                "tourId": result.tour_id,
                "tourCode": result.tour_code,
            })
        return JSONResponse(status_code=STATUS_CODES.get(result.reason, 500), content=body)

    @app.get("/api/health")
    async def health_check():
        """
        Health check endpoint for monitoring.

        Returns:
            JSON response with application status
        """
        return {
            "status": "healthy",
            "application": "Tour Companion API",
            "version": app.version,
            "app_check_required": config.require_app_check,
            "rate_limit_keys": rate_limiter.get_record_count(),
        }

    return app


@click.command()
@click.option(
    '--host',
    envvar='WEB_HOST',
    default='0.0.0.0',
    show_default=True,
    help='Host to bind the web server to'
)
@click.option(
    '--port',
    envvar='WEB_PORT',
    type=int,
    default=8000,
    show_default=True,
    help='Port to bind the web server to'
)
@click.option(
    '--reload',
    envvar='WEB_RELOAD',
    is_flag=True,
    default=False,
    help='Enable auto-reload for development'
)
@click.option(
    '--log-level',
    envvar='WEB_LOG_LEVEL',
    default='info',
    show_default=True,
    type=click.Choice(['critical', 'error', 'warning', 'info', 'debug'], case_sensitive=False),
    help='Logging level for the web server'
)
def run_server(host: str, port: int, reload: bool, log_level: str):
    """
    Start the login API with uvicorn.

    Configuration can be provided via command-line options or environment variables
    (WEB_HOST, WEB_PORT, WEB_RELOAD, WEB_LOG_LEVEL). Service settings come from
    the COMPANION_* variables.
    """
    import uvicorn

    logger.info(f"Starting web server on {host}:{port}")
    logger.info(f"Reload mode: {reload}")

    uvicorn.run(
        "tour_companion.web:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower()
    )
