"""HTTP middleware."""

from ttc_incidents.middleware.access_logging import AccessLoggingMiddleware

__all__ = ["AccessLoggingMiddleware"]
