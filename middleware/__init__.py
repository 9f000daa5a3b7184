"""Security middleware package"""
from .security import SecurityMiddleware, rate_limiter

__all__ = ["SecurityMiddleware", "rate_limiter"]
