from starlette.middleware.base import BaseHTTPMiddleware

from user_service.core.metrics import http_requests_total, normalize_path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count requests per method, route template and status."""

    async def dispatch(self, request, call_next):
        try:
            response = await call_next(request)
        except Exception:
            # the unhandled-exception handler answers 500 further out
            _count_request(request, 500)
            raise
        _count_request(request, response.status_code)
        return response


def _route_path(request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or normalize_path(request.url.path)


def _count_request(request, status: int) -> None:
    http_requests_total.inc(labels={
        "method": request.method.upper(),
        "path": _route_path(request),
        "status": str(status),
    })
