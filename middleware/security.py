"""
Security middleware for the webhook endpoints
Provides per-sender rate limiting and security headers
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Dict, Optional, List, Tuple, Any
from urllib.parse import parse_qs
import json
import time
from collections import defaultdict

from utils.helpers import normalize_phone
from utils.logging_config import logger

OPEN_PATHS = ("/", "/health", "/health/", "/health/ready", "/health/live")


# In-memory rate limiter (one process; a shared store is needed to scale out)
class RateLimiter:
    def __init__(self, block_seconds: int = 300):
        self.requests: Dict[str, List[float]] = defaultdict(list)
        self.blocked: Dict[str, float] = {}
        self.block_seconds = block_seconds

    def is_allowed(self, identifier: str, max_requests: int = 30, window: int = 60) -> Tuple[bool, Optional[str]]:
        """
        Sliding-window check for one sender.
        Args:
            identifier: phone number or IP address
            max_requests: max requests per window
            window: time window in seconds
        Returns:
            (is_allowed, error_message)
        """
        now = time.time()

        if identifier in self.blocked:
            if now < self.blocked[identifier]:
                remaining = int(self.blocked[identifier] - now)
                return False, f"Too many requests. Try again in {remaining} seconds."
            del self.blocked[identifier]

        cutoff = now - window
        self.requests[identifier] = [t for t in self.requests[identifier] if t > cutoff]

        if len(self.requests[identifier]) >= max_requests:
            self.blocked[identifier] = now + self.block_seconds
            return False, f"Rate limit exceeded. Blocked for {self.block_seconds // 60} minutes."

        self.requests[identifier].append(now)
        return True, None

    def reset(self) -> None:
        self.requests.clear()
        self.blocked.clear()


def sender_from_body(body: bytes, content_type: str) -> Optional[str]:
    """Phone number of the texter, from a JSON ``phone`` or a form-encoded ``From`` field."""
    if not body:
        return None
    text = body.decode("utf-8", errors="ignore")
    if "application/json" in content_type:
        try:
            data = json.loads(text)
        except ValueError:
            return None
        phone = data.get("phone") if isinstance(data, dict) else None
    else:
        phone = (parse_qs(text).get("From") or [None])[0]
    return normalize_phone(phone) if isinstance(phone, str) else None


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    - Rate limiting per sending phone (falls back to client IP)
    - Security headers
    """

    def __init__(self, app: Any, rate_limiter: RateLimiter, max_requests: int = 30, window: int = 60):
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.max_requests = max_requests
        self.window = window

    async def dispatch(self, request: Request, call_next: Any):
        if request.url.path in OPEN_PATHS:
            response = await call_next(request)
            return self._add_security_headers(response)

        identifier = await self._get_identifier(request)
        is_allowed, error_msg = self.rate_limiter.is_allowed(
            identifier, max_requests=self.max_requests, window=self.window
        )
        if not is_allowed:
            logger.warning(f"⛔ Rate limited {identifier}: {error_msg}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": "rate_limit_exceeded", "message": error_msg}
            )

        response = await call_next(request)
        return self._add_security_headers(response)

    async def _get_identifier(self, request: Request) -> str:
        if request.method == "POST":
            body = await request.body()
            phone = sender_from_body(body, request.headers.get("content-type", ""))
            if phone:
                return f"phone:{phone}"

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"
        client_host = request.client.host if request.client else "unknown"
        return f"ip:{client_host}"

    def _add_security_headers(self, response: Any) -> Any:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'"
        return response


# Global rate limiter instance
rate_limiter = RateLimiter()
