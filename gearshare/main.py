# GearShare Rentals - Equipment Rental Marketplace Backend
# Copyright (C) 2025 Oleg Tokmakov
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Main FastAPI application entry point."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gearshare import __version__
from gearshare.config import get_settings, init_settings
from gearshare.database import init_database
from gearshare.errors import RentalError
from gearshare.middleware.cors import ScopedCORSMiddleware
from gearshare.routes import api_router
from gearshare.services.scheduler import start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting GearShare Rentals v{__version__}")

    config_path = os.environ.get("GEARSHARE_CONFIG")
    settings = init_settings(config_path)
    if not settings.payments_configured:
        logger.warning("Payment processor keys are not configured; checkout will fail")

    init_database()

    # Start scheduler
    start_scheduler()
    logger.info("Scheduler started")

    yield

    # Shutdown
    stop_scheduler()
    logger.info("Scheduler stopped")


def cors_policies(settings) -> dict:
    """CORS options for the scoped middleware.

    The webhook is protected by its signature and accepts any origin; the
    checkout endpoints accept only the configured storefront origin.
    """
    return {
        "scopes": [
            (
                "/api/payments/webhook",
                {
                    "allow_origins": ["*"],
                    "allow_methods": ["POST", "OPTIONS"],
                    "allow_headers": ["authorization", "content-type", "stripe-signature"],
                },
            ),
            (
                "/api/payments",
                {
                    "allow_origins": [settings.cors.checkout_origin],
                    "allow_credentials": True,
                    "allow_methods": ["POST", "OPTIONS"],
                    "allow_headers": ["authorization", "x-client-info", "apikey", "content-type"],
                    "max_age": 86400,
                },
            ),
        ],
        "default": {
            "allow_origins": ["*"] if settings.app.debug else [settings.app.base_url],
            "allow_credentials": not settings.app.debug,
            "allow_methods": ["*"],
            "allow_headers": ["*"],
        },
    }


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="GearShare Rentals",
        description="Equipment rental booking and payment reconciliation API",
        version=__version__,
        license_info={
            "name": "AGPL-3.0-or-later",
            "url": "https://www.gnu.org/licenses/agpl-3.0.html",
        },
        lifespan=lifespan,
    )

    app.add_middleware(ScopedCORSMiddleware, **cors_policies(settings))

    # Include API routes
    app.include_router(api_router)

    @app.exception_handler(RentalError)
    async def rental_error_handler(request: Request, exc: RentalError):
        """Render workflow errors as JSON payloads with a message."""
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.exception(f"Unhandled error on {request.url.path}")
        if settings.app.debug:
            return JSONResponse(
                status_code=500,
                content={"detail": str(exc), "type": type(exc).__name__},
            )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "gearshare.main:app",
        host=settings.app.host,
        port=settings.app.port,
        reload=settings.app.debug,
    )
