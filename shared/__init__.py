"""
Shared utilities for the CourtListener Proxy.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI host with middleware, health and metrics routes

Do not import from service_* packages into shared/.
"""
