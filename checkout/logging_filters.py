"""JSON logging with per-request correlation.

``configure_logging`` installs one JSON handler on the ``checkout`` logger.
The ``RequestIdFilter`` attached to that handler injects the current request
id (set by ``checkout.middleware``) into every record, so formatters can
reference ``%(request_id)s`` without callers passing it explicitly.
"""

import logging
from logging import Filter, LogRecord

from pythonjsonlogger import jsonlogger

from .middleware import REQUEST_ID_CTX

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    The value comes from ``REQUEST_ID_CTX``; outside a request it is "-".
    Records that already carry a ``request_id`` (passed via ``extra``) keep it.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True


def configure_logging(level: str = "info") -> logging.Logger:
    """Install the JSON handler on the ``checkout`` logger once.

    Args:
        level: Level name, case-insensitive.

    Returns:
        logging.Logger: The configured ``checkout`` logger.
    """
    logger = logging.getLogger("checkout")
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
        h.addFilter(RequestIdFilter())
        logger.addHandler(h)
    logger.setLevel(level.upper())
    return logger
