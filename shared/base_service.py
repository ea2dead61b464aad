"""
Base service class for reporting backend services.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import ReportingConfig, get_config
from shared.errors import GENERIC_SERVER_ERROR, AccessLayerException, ValidationError
from shared.logging import clear_context, configure_logging, get_logger, set_request_id, set_route
from shared.metrics import get_metrics_collector


class BaseService:
    """Base service class with common functionality.

    Construction order: components, app, service middleware (innermost),
    common middleware (outermost), common routes, service routes.
    """

    def __init__(self, service_name: str, config: Optional[ReportingConfig] = None):
        self.service_name = service_name
        self.config = config or get_config()

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        self._setup_components()

        self.app = self._create_app()
        self._setup_service_middleware()
        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()
        self._setup_service_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Reporting backend - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=self._lifespan,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        """Startup and shutdown events."""
        self.logger.info("Service starting", service=self.service_name, env=self.config.env)
        await self.on_startup()
        try:
            yield
        finally:
            await self.on_shutdown()
            self.logger.info("Service stopped", service=self.service_name)

    # Hooks for subclasses
    def _setup_components(self):
        """Build service collaborators before the app exists."""

    def _setup_service_middleware(self):
        """Register service middleware; runs inside the common middleware."""

    def _setup_service_routes(self):
        """Register service routes."""

    async def on_startup(self):
        pass

    async def on_shutdown(self):
        pass

    def _setup_middleware(self):
        """Set up common middleware."""

        # Request timing middleware
        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            set_route(request.url.path)
            start_time = time.time()

            try:
                response = await call_next(request)

                duration = time.time() - start_time
                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=response.status_code,
                    duration=duration
                )
                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2)
                )

                response.headers["X-Request-ID"] = request_id
                return response
            finally:
                clear_context()

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def error_response(self, exc: AccessLayerException) -> JSONResponse:
        """Render an exception as the standard error envelope."""
        body = exc.to_response(expose_details=self.config.is_development)
        return JSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(exclude_none=True)
        )

    def _setup_exception_handlers(self):
        """Map exceptions onto the standard error envelope."""

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Request failed",
                path=request.url.path,
                code=exc.code,
                message=exc.message,
                details=exc.details
            )
            self.metrics.record_error(exc.code)
            return self.error_response(exc)

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            errors = exc.errors()
            first = errors[0] if errors else {}
            field = ".".join(str(part) for part in first.get("loc", ())[1:])
            message = first.get("msg", "Validation failed")
            error = ValidationError(
                f"{field}: {message}" if field else message,
                details={"errors": [e.get("msg") for e in errors]}
            )
            return await access_layer_exception_handler(request, error)

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            return JSONResponse(
                status_code=exc.status_code,
                content={"success": False, "message": str(exc.detail)},
                headers=getattr(exc, "headers", None),
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            content: Dict[str, Any] = {
                "success": False,
                "code": "INTERNAL_ERROR",
                "message": GENERIC_SERVER_ERROR,
            }
            if self.config.is_development:
                content["details"] = {"error": str(exc)}
            return JSONResponse(status_code=500, content=content)

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return {
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": round(time.time() - self._start_time, 3),
                "dependencies": await self._check_dependencies(),
                "version": "1.0.0",
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=generate_latest(self.metrics.registry),
                media_type=CONTENT_TYPE_LATEST
            )

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
