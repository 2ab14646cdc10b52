"""Gateway that checks object existence through a cache and redirects to signed URLs."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import PlainTextResponse, RedirectResponse
from opentelemetry import trace
from starlette.types import Receive, Scope, Send

from ..common.http_security import client_address, require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Counter, Histogram
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.settings import GatewaySettings
from .cache import CacheError, ExistenceCache, RedisExistenceCache, confirmation_marker
from .sampler import StatusSampler
from .storage import ObjectNotFound, ObjectStorage, S3ObjectStorage, StorageError, signed_url_deadline

ROOT_PATH = "/"
STATUS_PATH = "/_status"

NOT_FOUND_BODY = "404 - Not Found\n"
STATUS_OK_BODY = "200 - OK\n"
METHOD_NOT_ALLOWED_BODY = "405 - Method Not Allowed\n"

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("bucketgate_requests_total", "Object requests handled"))
HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("bucketgate_cache_hits_total", "Existence cache hits"))
MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("bucketgate_cache_misses_total", "Existence cache misses"))
NOT_FOUND_COUNTER = GLOBAL_REGISTRY.register(Counter("bucketgate_not_found_total", "Objects missing from storage"))
ERROR_COUNTER = GLOBAL_REGISTRY.register(Counter("bucketgate_errors_total", "Requests failed by cache or signing errors"))
REDIRECT_COUNTER = GLOBAL_REGISTRY.register(Counter("bucketgate_redirects_total", "Signed redirects issued"))
LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "bucketgate_request_latency_seconds",
        buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0],
        description="Request handling latency",
    )
)
TRACER = trace.get_tracer("bucketgate.gateway")


class GatewayState:
    def __init__(
        self,
        settings: GatewaySettings,
        storage: ObjectStorage,
        cache: ExistenceCache,
        sampler: StatusSampler,
    ):
        self.settings = settings
        self.storage = storage
        self.cache = cache
        self.sampler = sampler
        self.logger = structlog.get_logger("bucketgate.gateway").bind(bucket=settings.s3_bucket)
        self.access_logger = structlog.get_logger("bucketgate.access")


Handler = Callable[[Request, GatewayState], Awaitable[Response]]


def request_target(request: Request) -> str:
    """Raw request target as sent by the client: undecoded path plus query string."""
    raw_path = request.scope.get("raw_path")
    target = raw_path.split(b"?", 1)[0].decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string", b"")
    if query:
        target = f"{target}?{query.decode('latin-1')}"
    return target


def format_access_line(client_ip: str, method: str, status_code: int, duration_ms: float, uri: str) -> str:
    return "[%s]\t[%s]\t[%d]\t[%fms]\t[%s]" % (client_ip, method, status_code, duration_ms, uri)


def _server_error(exc: Exception) -> PlainTextResponse:
    return PlainTextResponse(f"500 - {exc}\n", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def handle_head(request: Request, state: GatewayState) -> Response:
    target = request_target(request)
    if not target:
        return Response(status_code=status.HTTP_404_NOT_FOUND)

    key = target[1:]
    REQUEST_COUNTER.inc()
    with TRACER.start_as_current_span("bucketgate.head", attributes={"bucketgate.key": key}) as span:
        try:
            info = await state.storage.stat(key)
        except ObjectNotFound:
            NOT_FOUND_COUNTER.inc()
            return Response(status_code=status.HTTP_404_NOT_FOUND)
        except StorageError as exc:
            NOT_FOUND_COUNTER.inc()
            state.logger.warning("storage_lookup_failed", key=key, error=str(exc))
            return Response(status_code=status.HTTP_404_NOT_FOUND)

        try:
            await state.cache.set(key, confirmation_marker())
        except CacheError as exc:
            ERROR_COUNTER.inc()
            state.logger.error("cache_refresh_failed", key=key, error=str(exc))
            return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        span.set_attribute("bucketgate.bytes", info.size)
        response = Response(status_code=status.HTTP_200_OK)
        response.headers["Content-Length"] = str(info.size)
        return response


async def handle_get(request: Request, state: GatewayState) -> Response:
    target = request_target(request)
    if target == ROOT_PATH:
        return PlainTextResponse(NOT_FOUND_BODY, status_code=status.HTTP_404_NOT_FOUND)
    if target == STATUS_PATH:
        return PlainTextResponse(STATUS_OK_BODY, status_code=status.HTTP_200_OK)

    key = target[1:]
    REQUEST_COUNTER.inc()
    with TRACER.start_as_current_span("bucketgate.get", attributes={"bucketgate.key": key}) as span:
        try:
            marker = await state.cache.get(key)
        except CacheError as exc:
            ERROR_COUNTER.inc()
            state.logger.error("cache_lookup_failed", key=key, error=str(exc))
            return _server_error(exc)

        # A hit is trusted regardless of age; storage is only consulted on a miss.
        span.set_attribute("bucketgate.cache_hit", marker is not None)
        if marker is None:
            MISS_COUNTER.inc()
            try:
                await state.storage.stat(key)
            except ObjectNotFound:
                NOT_FOUND_COUNTER.inc()
                return PlainTextResponse(NOT_FOUND_BODY, status_code=status.HTTP_404_NOT_FOUND)
            except StorageError as exc:
                NOT_FOUND_COUNTER.inc()
                state.logger.warning("storage_lookup_failed", key=key, error=str(exc))
                return PlainTextResponse(NOT_FOUND_BODY, status_code=status.HTTP_404_NOT_FOUND)
        else:
            HIT_COUNTER.inc()

        try:
            await state.cache.set(key, confirmation_marker())
        except CacheError as exc:
            ERROR_COUNTER.inc()
            state.logger.error("cache_refresh_failed", key=key, error=str(exc))
            return _server_error(exc)

        deadline = signed_url_deadline(window_seconds=state.settings.signed_url_window_seconds)
        try:
            signed_path = state.storage.make_signed_url(key, deadline)
        except StorageError as exc:
            ERROR_COUNTER.inc()
            state.logger.error("signing_failed", key=key, error=str(exc))
            return _server_error(exc)
        span.set_attribute("bucketgate.deadline", deadline)
        REDIRECT_COUNTER.inc()
        return RedirectResponse(
            f"http://{state.settings.content_domain}{signed_path}",
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
        )


async def handle_method_not_allowed(request: Request, state: GatewayState) -> Response:
    return PlainTextResponse(METHOD_NOT_ALLOWED_BODY, status_code=status.HTTP_405_METHOD_NOT_ALLOWED)


ROUTES: dict[str, Handler] = {
    "HEAD": handle_head,
    "GET": handle_get,
}


def get_state(request: Request) -> GatewayState:
    return request.app.state.gateway  # type: ignore[attr-defined]


class MethodDispatcher:
    """ASGI endpoint mounted on every path; picks the handler from ``ROUTES`` by method.

    Starlette limits plain function endpoints to GET and HEAD, while an ASGI
    callable route accepts any method, including non-standard ones.
    """

    def __init__(self, routes: dict[str, Handler], fallback: Handler):
        self._routes = routes
        self._fallback = fallback

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        handler = self._routes.get(request.method, self._fallback)
        response = await handler(request, get_state(request))
        await response(scope, receive, send)


def create_app(
    settings: Optional[GatewaySettings] = None,
    storage: Optional[ObjectStorage] = None,
    cache: Optional[ExistenceCache] = None,
) -> FastAPI:
    settings = settings or GatewaySettings()
    configure_logging("bucketgate", settings.log_level, settings.log_format)
    configure_tracing(
        service_name="bucketgate",
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )
    owned_cache: Optional[RedisExistenceCache] = None
    if cache is None:
        owned_cache = RedisExistenceCache.from_settings(settings)
        cache = owned_cache
    if storage is None:
        storage = S3ObjectStorage(settings)
    state = GatewayState(settings, storage, cache, StatusSampler(settings.status_log_threshold))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state.logger.info("gateway_started", content_domain=settings.content_domain)
        try:
            yield
        finally:
            if owned_cache is not None:
                await owned_cache.close()

    # Every path belongs to the object key space, so the generated docs are disabled.
    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    instrument_fastapi_app(app)
    app.state.gateway = state

    def write_access_line(client_ip: str, method: str, status_code: int, duration: float, uri: str) -> None:
        duration_ms = duration * 1000
        state.access_logger.info(
            format_access_line(client_ip, method, status_code, duration_ms, uri),
            client_ip=client_ip,
            method=method,
            status=status_code,
            duration_ms=round(duration_ms, 3),
            uri=uri,
        )

    @app.middleware("http")
    async def access_log(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        uri = request_target(request)
        client_ip = client_address(request, settings.real_ip_header)
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            LATENCY_HISTOGRAM.observe(duration)
            state.logger.exception(
                "http_request_error",
                method=request.method,
                uri=uri,
                duration_ms=round(duration * 1000, 2),
            )
            # The server answers 500 once the exception leaves the app.
            write_access_line(client_ip, request.method, status.HTTP_500_INTERNAL_SERVER_ERROR, duration, uri)
            raise

        duration = time.perf_counter() - start
        LATENCY_HISTOGRAM.observe(duration)
        if uri == STATUS_PATH and not state.sampler.sample():
            return response

        write_access_line(client_ip, request.method, response.status_code, duration, uri)
        return response

    if settings.metrics_path:

        @app.get(settings.metrics_path, response_class=PlainTextResponse, include_in_schema=False)
        async def metrics_endpoint(request: Request) -> PlainTextResponse:
            token = settings.metrics_token.get_secret_value() if settings.metrics_token else None
            require_metrics_access(request, token)
            return PlainTextResponse(GLOBAL_REGISTRY.render())

    app.add_route("/{object_path:path}", MethodDispatcher(ROUTES, handle_method_not_allowed), include_in_schema=False)
    return app
