import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import booking_routes
from booking_lifecycle import BookingLifecycleController
from config import Settings, configure_logging, load_settings
from errors import BookingError
from notifications.mailer import EmailNotifier
from payments import routes as payment_routes
from payments.checkout import StripeGateway
from persistence.db import Database
from pricing import PRICING_RULES, PricingRules
from webhooks import webhooks

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An unexpected error occurred. Please try again."


async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"success": False, "error": f"Invalid request body: {message}"})


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": GENERIC_ERROR})


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None,
               gateway: Optional[StripeGateway] = None, notifier: Optional[EmailNotifier] = None,
               rules: PricingRules = PRICING_RULES) -> FastAPI:
    """
    Build the booking API. Clients are created once here and shared by every
    request; tests pass their own database, gateway and notifier.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    database = database or Database(settings.database_url)
    gateway = gateway or StripeGateway(
        settings.stripe_secret_key,
        currency=settings.stripe_currency,
        expires_after=settings.stripe_session_expires_after,
        environment=settings.environment,
    )
    notifier = notifier or EmailNotifier(
        settings.resend_api_key, settings.email_from, settings.email_from_name, settings.email_admin
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # initialize DB (creates tables)
        database.init_db()
        logger.info("Booking API started (env=%s, webhook secret %s)", settings.environment,
                    "configured" if settings.stripe_webhook_secret else "missing")
        yield
        database.dispose()

    app = FastAPI(title="Royal Transfers BCN Booking API", lifespan=lifespan)
    app.state.settings = settings
    app.state.controller = BookingLifecycleController(settings, database, gateway, notifier, rules)

    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.include_router(booking_routes.router)
    app.include_router(payment_routes.router)
    app.include_router(webhooks.router)
    return app
