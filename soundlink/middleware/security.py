"""
Response headers for a service that only emits redirects and JSON.

  - /c/     tracker hop: never cached, and no Referer leaks the click id
            carried in the OAuth `state` query parameter
  - /v1/    internal writes and campaign admin: never cached
  - /api/   campaign analytics: cacheable per client for a minute
"""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

NO_STORE = "no-store, private"

CACHE_POLICIES = (
    ("/c/", NO_STORE),
    ("/v1/", NO_STORE),
    ("/api/campaigns/", "private, max-age=60"),
)


def cache_policy(path: str) -> str | None:
    for prefix, policy in CACHE_POLICIES:
        if path.startswith(prefix):
            return policy
    return None


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        path = request.url.path

        if "server" in response.headers:
            del response.headers["server"]

        policy = cache_policy(path)
        if policy is not None:
            response.headers["Cache-Control"] = policy

        if path.startswith("/c/"):
            response.headers["Referrer-Policy"] = "no-referrer"
        else:
            response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # JSON bodies must not be sniffed into something renderable
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
