"""
Shared utilities for the reporting backend.

This package aggregates common building blocks consumed by services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry / circuit_breaker: Resilient vendor call protection
- base_service: FastAPI application scaffolding

Do not import from service_* packages into shared/.
"""
