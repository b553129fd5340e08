from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.access_policy import is_paywall_path
from app.core.policy_config import BotPolicyConfig


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)

        if "server" in response.headers:
            del response.headers["server"]
        if "X-Powered-By" in response.headers:
            del response.headers["X-Powered-By"]

        path = request.url.path
        gate = getattr(request.app.state, "gate", None)
        policy = gate.policy if gate is not None else BotPolicyConfig()

        # Paywall and admin responses are per-visitor; never cache or index them
        if path == "/admin" or path.startswith("/admin/") or is_paywall_path(path, policy):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
            response.headers["X-Robots-Tag"] = "noindex, nofollow"

        # Responses differ by UA because bots may be redirected
        if "Vary" in response.headers:
            if "user-agent" not in response.headers["Vary"].lower():
                response.headers["Vary"] = response.headers["Vary"] + ", User-Agent"
        else:
            response.headers["Vary"] = "User-Agent"

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-Frame-Options"] = "DENY"
        if "Content-Security-Policy" not in response.headers:
            response.headers["Content-Security-Policy"] = "frame-ancestors 'none'"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response
