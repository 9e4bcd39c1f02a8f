from checkout.config import Settings


def test_database_url_wins(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///tmp.db")
    monkeypatch.setenv("DB_HOST", "ignored")
    assert Settings.from_env().database_url == "sqlite:///tmp.db"


def test_database_url_composed_from_parts(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DB_HOST", "db")
    monkeypatch.setenv("DB_PORT", "6543")
    monkeypatch.setenv("DB_NAME", "shop")
    monkeypatch.setenv("DB_USER", "u")
    monkeypatch.setenv("DB_PASSWORD", "p")
    assert Settings.from_env().database_url == "postgresql+psycopg://u:p@db:6543/shop"


def test_numeric_knobs(monkeypatch):
    monkeypatch.setenv("CART_MAX_LINE_QUANTITY", "5")
    monkeypatch.setenv("ORDER_NUMBER_ATTEMPTS", "3")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("UVICORN_WORKERS", "4")
    settings = Settings.from_env()
    assert settings.cart_max_line_quantity == 5
    assert settings.order_number_attempts == 3
    assert settings.port == 8080
    assert settings.workers == 4
