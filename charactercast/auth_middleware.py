"""
Authentication middleware for the content generator worker.

Every /content-generator/* request must carry:
  X-Worker-Secret — must match WORKER_SHARED_SECRET (skipped in development
                    when the secret is not set)
  X-User-Id       — the already-authenticated end user; becomes request.state.owner

The web app attaches both when forwarding requests to the worker.
"""

import os
import secrets

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

WORKER_SECRET = os.environ.get("WORKER_SHARED_SECRET", "")

PROTECTED_PREFIX = "/content-generator"


class WorkerAuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests to /content-generator/* endpoints."""

    PUBLIC_PATHS = {"/health", "/metrics", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, secret: str = None, environment: str = None):
        super().__init__(app)
        self.secret = WORKER_SECRET if secret is None else secret
        self.environment = environment or os.environ.get("ENVIRONMENT", "development")

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in self.PUBLIC_PATHS or not path.startswith(PROTECTED_PREFIX):
            return await call_next(request)

        if not self.secret:
            if self.environment != "development":
                return JSONResponse({"detail": "WORKER_SHARED_SECRET not configured"}, status_code=500)
        else:
            # Constant-time compare avoids timing attacks
            provided = request.headers.get("X-Worker-Secret", "")
            if not secrets.compare_digest(provided, self.secret):
                return JSONResponse({"detail": "Invalid or missing worker secret"}, status_code=401)

        owner = request.headers.get("X-User-Id", "").strip()
        if not owner:
            return JSONResponse({"detail": "Unauthorized"}, status_code=401)

        request.state.owner = owner
        return await call_next(request)
