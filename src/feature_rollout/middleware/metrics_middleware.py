import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..metrics import REQUEST_COUNT, REQUEST_LATENCY


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        latency = time.time() - start
        # label by route template so /features/{name} stays one series
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path
        method = request.method

        if REQUEST_LATENCY is not None:
            REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(latency)
        if REQUEST_COUNT is not None:
            REQUEST_COUNT.labels(
                method=method, endpoint=endpoint, http_status=str(response.status_code)
            ).inc()

        return response
