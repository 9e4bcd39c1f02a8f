"""HTTP middleware that assigns and propagates a request identifier.

Every request gets an id: the incoming ``X-Request-ID`` header when the
gateway supplied one, otherwise a fresh UUID4. The id is stored on
``request.state``, published through ``REQUEST_ID_CTX`` for code that has no
request object (services, log filters) and echoed on the response.
"""

import contextvars
import logging
import uuid

from fastapi import Request

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
HEADER = "X-Request-ID"

logger = logging.getLogger("checkout.http")


async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get(HEADER) or str(uuid.uuid4())
    request.state.request_id = rid
    token = REQUEST_ID_CTX.set(rid)
    try:
        response = await call_next(request)
    finally:
        logger.info(
            "request handled",
            extra={"request_id": rid, "path": request.url.path, "method": request.method},
        )
        REQUEST_ID_CTX.reset(token)
    response.headers[HEADER] = rid
    return response
