"""
Shared utilities for the OAuth Session Lab.

This package aggregates common building blocks consumed by the token service,
the session manager and the mock servers:

- config: Configuration via pydantic-settings (``OAUTH_`` environment prefix)
- logging: Structured logging with trace and correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service shell with health, metrics and error handlers
- models: Session, token and verification value types
- clock: Injectable epoch-millisecond clock

Any cross-package logic should live here to avoid import cycles. Do not import
from service_oauth or session_manager into shared/.
"""
