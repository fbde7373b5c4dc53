"""HTTP middleware for the contact service."""

from rolodex.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware"]
