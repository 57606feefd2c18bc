import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("taskboard.access")

REQUEST_ID_HEADER = "X-Request-ID"


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class AccessLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        base = {
            "category": "http",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }
        start = time.perf_counter()

        logger.info(
            "request.start",
            extra={**base, "event": "request.start", "query": str(request.url.query),
                   "client": request.client.host if request.client else None},
        )

        try:
            response: Response = await call_next(request)
        except Exception:
            logger.exception("request.error", extra={**base, "event": "request.error", "duration_ms": _elapsed_ms(start)})
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "request.end",
            extra={**base, "event": "request.end", "status_code": response.status_code, "duration_ms": _elapsed_ms(start)},
        )
        return response
