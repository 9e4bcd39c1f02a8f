"""Checkout service API built with FastAPI.

``create_app`` wires the services around one injected ``Database`` and maps
the checkout error taxonomy to HTTP responses. ``run`` starts uvicorn with
the settings read from the environment.
"""

import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .api import router
from .cart import CartStore
from .config import Settings
from .domain import (
    CartValidationFailed,
    CheckoutError,
    ConflictRetry,
    EmptyCart,
    Forbidden,
    InsufficientStock,
    InvalidQuantity,
    InvalidTransition,
    NoChanges,
    NotFound,
    Unavailable,
)
from .lifecycle import OrderLifecycleManager
from .logging_filters import configure_logging
from .middleware import request_id_middleware
from .orders import OrderFactory
from .repo import Database
from .validator import CartValidator

logger = logging.getLogger("checkout.api")

ERROR_STATUS = {
    NotFound: 404,
    Unavailable: 422,
    InsufficientStock: 422,
    CartValidationFailed: 422,
    EmptyCart: 400,
    InvalidQuantity: 400,
    NoChanges: 400,
    Forbidden: 403,
    InvalidTransition: 409,
    ConflictRetry: 409,
}


def status_for(exc: CheckoutError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 400


async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(exc.to_dict(), status_code=status_for(exc))


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    # The failing transaction has already been rolled back by its scope.
    logger.exception("unhandled database error", extra={"path": request.url.path})
    return JSONResponse({"detail": "INTERNAL_ERROR"}, status_code=500)


def create_app(db: Database | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        db: Persistence handle; built from ``settings.database_url`` when
            omitted.
        settings: Service settings; read from the environment when omitted.

    Returns:
        FastAPI: Application with routes, middleware and error handlers.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    db = db or Database(settings.database_url)

    app = FastAPI(title="Checkout Service")
    validator = CartValidator(db)
    app.state.settings = settings
    app.state.db = db
    app.state.cart = CartStore(db, max_line_quantity=settings.cart_max_line_quantity)
    app.state.validator = validator
    app.state.orders = OrderFactory(db, validator, max_attempts=settings.order_number_attempts)
    app.state.lifecycle = OrderLifecycleManager(db)

    @app.on_event("startup")
    def _startup_db():
        # brief wait until the database accepts connections
        db.wait_until_ready(settings.db_connect_timeout)
        db.create_all()

    app.middleware("http")(request_id_middleware)
    app.add_exception_handler(CheckoutError, checkout_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.include_router(router)
    return app


def run() -> None:
    settings = Settings.from_env()
    uvicorn.run(
        "checkout.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        loop="uvloop",
        http="h11",
        log_level=settings.log_level,
    )
