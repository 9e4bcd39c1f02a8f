"""Cart-to-order checkout core.

Services are plain objects built around an injected ``Database``:
``CartStore``, ``CartValidator``, ``OrderFactory`` and
``OrderLifecycleManager``. ``checkout.main.create_app`` exposes them over HTTP.
"""

from .cart import CartStore
from .lifecycle import OrderLifecycleManager
from .orders import OrderFactory
from .repo import Database
from .stock import StockLedger
from .validator import CartValidator

__all__ = [
    "CartStore",
    "CartValidator",
    "Database",
    "OrderFactory",
    "OrderLifecycleManager",
    "StockLedger",
]
