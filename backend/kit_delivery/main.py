import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Iterable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware

from kit_delivery.api.problem_details import (
    PROBLEM_TYPE_DOMAIN,
    PROBLEM_TYPE_RATE_LIMIT,
    PROBLEM_TYPE_SERVER,
    PROBLEM_TYPE_VALIDATION,
    domain_problem,
    problem_details,
)
from kit_delivery.api.routes_admin_cep_zones import router as admin_cep_zones_router
from kit_delivery.api.routes_cep_zones import router as cep_zones_router
from kit_delivery.api.routes_health import router as health_router
from kit_delivery.domain.errors import DomainError
from kit_delivery.infra.db import dispose_engine, get_session_factory
from kit_delivery.infra.logging import clear_log_context, configure_logging, update_log_context
from kit_delivery.infra.metrics import configure_metrics
from kit_delivery.infra.security import RateLimiter, resolve_client_key
from kit_delivery.infra.tracing import configure_tracing, instrument_fastapi, route_template
from kit_delivery.services import build_app_services
from kit_delivery.settings import settings

logger = logging.getLogger(__name__)

RATE_LIMITED_PREFIXES = ("/v1/cep-zones",)


def _bucket_for_path(path: str) -> str:
    if path.startswith("/v1/admin"):
        return "admin"
    if path.startswith("/v1/cep-zones"):
        return "cep_zones"
    return "other"


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_logger = logging.getLogger("kit_delivery.request")
        start = time.time()
        request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
        if not request_id:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        route_path = route_template(request.url.path)
        update_log_context(request_id=request_id, method=request.method, path=route_path)
        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_attribute("request_id", request_id)

        response = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            admin_identity = getattr(request.state, "admin_identity", None)
            if admin_identity is not None:
                update_log_context(role=admin_identity.role.value)
            latency_ms = int((time.time() - start) * 1000)
            update_log_context(status_code=status_code, latency_ms=latency_ms)
            request_logger.info("request", extra={"latency_ms": latency_ms})
            if response is not None:
                response.headers.setdefault("X-Request-ID", request_id)
            clear_log_context()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, metrics_client) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        route_label = "unmatched"
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            route = request.scope.get("route")
            route_label = getattr(route, "path", route_label)
            duration = time.perf_counter() - start
            self.metrics.record_http_latency(request.method, route_label, status_code, duration)
            self.metrics.record_http_request(request.method, route_label, status_code)
        if status_code >= 500:
            self.metrics.record_http_5xx(request.method, route_label)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client limit on the public lookup endpoints.

    The limiter is read from ``app.state`` on every request so tests and the
    lifespan hook can swap it without rebuilding the middleware stack.
    """

    def __init__(self, app: FastAPI, limiter: RateLimiter, app_settings) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.app_settings = app_settings

    async def dispatch(self, request: Request, call_next: Callable):
        path = request.url.path
        if request.method == "OPTIONS" or not path.startswith(RATE_LIMITED_PREFIXES):
            return await call_next(request)

        limiter = getattr(request.app.state, "rate_limiter", None) or self.limiter
        client = resolve_client_key(
            request,
            trust_proxy_headers=self.app_settings.trust_proxy_headers,
            trusted_proxy_ips=self.app_settings.trusted_proxy_ips,
            trusted_proxy_cidrs=self.app_settings.trusted_proxy_cidrs,
        )
        bucket = _bucket_for_path(path)
        if not await limiter.allow(f"{bucket}:{client}"):
            metrics_client = getattr(request.app.state, "metrics", None)
            if metrics_client is not None:
                metrics_client.record_rate_limit_block(bucket)
            logger.warning(
                "rate_limit_blocked",
                extra={
                    "extra": {
                        "request_id": getattr(request.state, "request_id", None),
                        "bucket": bucket,
                        "limit_per_minute": self.app_settings.rate_limit_per_minute,
                    }
                },
            )
            return problem_details(
                request=request,
                status=429,
                title="Too Many Requests",
                detail="Rate limit exceeded",
                type_=PROBLEM_TYPE_RATE_LIMIT,
            )
        return await call_next(request)


def _resolve_cors_origins(app_settings) -> Iterable[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    if app_settings.strict_cors:
        return []
    if app_settings.app_env == "dev":
        return ["http://localhost:3000"]
    return []


def _validate_prod_config(app_settings) -> None:
    if app_settings.app_env != "prod":
        return
    admin_credentials = [
        (app_settings.owner_basic_username, app_settings.owner_basic_password),
        (app_settings.admin_basic_username, app_settings.admin_basic_password),
        (app_settings.viewer_basic_username, app_settings.viewer_basic_password),
    ]
    if app_settings.admin_basic_auth_enabled and not any(
        username and password for username, password in admin_credentials
    ):
        # Admin endpoints answer 401 until credentials are configured.
        logger.warning(
            "startup_config_warning",
            extra={"extra": {"detail": "no Basic Auth credentials configured for /v1/admin"}},
        )


def create_app(app_settings, *, tracer_provider=None) -> FastAPI:
    if tracer_provider is None:
        configure_tracing(service_name=app_settings.app_name)
    configure_logging(app_settings.log_level)
    metrics_client = configure_metrics(app_settings.metrics_enabled)
    _validate_prod_config(app_settings)

    services = build_app_services(app_settings, metrics=metrics_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state_services = getattr(app.state, "services", None) or services
        app.state.services = state_services
        app.state.rate_limiter = getattr(app.state, "rate_limiter", None) or state_services.rate_limiter
        app.state.metrics = getattr(app.state, "metrics", None) or state_services.metrics
        app.state.app_settings = getattr(app.state, "app_settings", app_settings)
        app.state.db_session_factory = getattr(app.state, "db_session_factory", None) or get_session_factory()
        yield
        await app.state.rate_limiter.close()
        await dispose_engine()

    app = FastAPI(title="Kit Delivery Pricing", version="1.0.0", lifespan=lifespan)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware, metrics_client=metrics_client)
    app.add_middleware(RateLimitMiddleware, limiter=services.rate_limiter, app_settings=app_settings)
    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(_resolve_cors_origins(app_settings)),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added last so the span wraps every middleware.
    instrument_fastapi(app, tracer_provider=tracer_provider)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = error.get("loc", [])
            field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "body"
            errors.append({"field": field, "message": error.get("msg", "Invalid value")})
        return problem_details(
            request=request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=errors,
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError):
        return domain_problem(request, exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.detail if isinstance(exc.detail, str) else "HTTP Error",
            detail=exc.detail if isinstance(exc.detail, str) else "Request failed",
            type_=PROBLEM_TYPE_DOMAIN if exc.status_code < 500 else PROBLEM_TYPE_SERVER,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None)
        error_type = type(exc).__name__
        update_log_context(
            request_id=request_id,
            method=request.method,
            status_code=500,
            error_type=error_type,
        )
        logger.exception(
            "unhandled_exception",
            extra={"request_id": request_id, "error_type": error_type},
        )
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )

    app.include_router(health_router)
    app.include_router(cep_zones_router)
    app.include_router(admin_cep_zones_router)
    if app_settings.metrics_enabled:
        from kit_delivery.api.routes_metrics import router as metrics_router

        app.include_router(metrics_router)
    return app


app = create_app(settings)
