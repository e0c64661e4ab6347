from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import time

# Metrics definitions
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"]
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

CACHE_HITS = Counter("cache_hits_total", "Total cache hits")
CACHE_MISSES = Counter("cache_misses_total", "Total cache misses")
CACHE_ERRORS = Counter("cache_errors_total", "Redis errors absorbed by the cache layer", ["operation"])
REDIRECT_TOTAL = Counter("redirect_total", "Total redirects", ["source"])
REDIRECT_404_TOTAL = Counter("redirect_404_total", "Total failed redirects (404)")
CLICK_LOG_DROPPED_TOTAL = Counter("click_log_dropped_total", "Click log entries lost to store errors")

KNOWN_PATHS = {"/", "/health", "/metrics", "/docs", "/redoc", "/openapi.json", "/v1/links"}


def normalize_path(path: str) -> str:
    # Short codes and link ids must not become label values
    if path in KNOWN_PATHS:
        return path
    if path.startswith("/v1/links/"):
        return "/v1/links/{link_id}"
    if len(path) > 1 and "/" not in path[1:]:
        return "/{code}"
    return "other"


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time = time.perf_counter() - start_time

        status_code = str(response.status_code)
        method = request.method
        metric_path = normalize_path(request.url.path)

        HTTP_REQUESTS_TOTAL.labels(method=method, path=metric_path, status=status_code).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=metric_path).observe(process_time)

        return response

def metrics_endpoint(request: Request):
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
