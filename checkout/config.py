"""Runtime configuration read from environment variables.

Every knob has a development default so the service and the test suite can
start without any environment. ``DATABASE_URL`` wins when present; otherwise
the URL is composed from the individual ``DB_*`` variables the same way the
inventory service does it.
"""

import os
from dataclasses import dataclass


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    host = os.getenv("DB_HOST", "checkout-db")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "checkout")
    user = os.getenv("DB_USER", "checkout_user")
    password = os.getenv("DB_PASSWORD", "checkout-pass")
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{name}"


@dataclass(frozen=True)
class Settings:
    """Service settings.

    Attributes:
        database_url: SQLAlchemy URL of the relational store.
        cart_max_line_quantity: Upper bound for a single add/set quantity.
        order_number_attempts: How many times order creation is attempted
            when the generated order number collides (first try included).
        db_connect_timeout: Seconds to wait for the database at startup.
        log_level: Level name for the ``checkout`` loggers.
        host: Bind address for the uvicorn runner.
        port: Bind port for the uvicorn runner.
        workers: Number of uvicorn worker processes.
    """

    database_url: str = "sqlite:///./checkout.db"
    cart_max_line_quantity: int = 100
    order_number_attempts: int = 2
    db_connect_timeout: int = 30
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 9000
    workers: int = 2

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_database_url(),
            cart_max_line_quantity=int(os.getenv("CART_MAX_LINE_QUANTITY", "100")),
            order_number_attempts=int(os.getenv("ORDER_NUMBER_ATTEMPTS", "2")),
            db_connect_timeout=int(os.getenv("DB_CONNECT_TIMEOUT", "30")),
            log_level=os.getenv("LOG_LEVEL", "info"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "9000")),
            workers=int(os.getenv("UVICORN_WORKERS", str(max(2, (os.cpu_count() or 1))))),
        )
