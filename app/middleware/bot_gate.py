"""
Bot gate middleware — runs classification + access policy on page requests.

Skipped entirely:
  - non-GET/HEAD requests
  - exempt prefixes from the live policy (/api/, /assets/, /admin/, ...),
    matched on whole path segments
  - static assets (last path segment has a dot), unless the path is one a
    crawler is explicitly allowed to fetch (robots.txt, sitemap.xml, ...)

Decision -> response:
  ALLOW             continue, verdict on request.state, X-Bot-Decision header
  REDIRECT_PAYWALL  302 to the paywall with returnUrl preserved
  BLOCK             403

If the pipeline itself blows up we log it and let the request through:
a classification bug must never take the site down.
"""

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.access_policy import PolicyAction
from app.core.gate import TrafficGate
from app.core.policy_config import BotPolicyConfig, normalize_path

import structlog

logger = structlog.get_logger()

GATED_METHODS = ("GET", "HEAD")


def _under_prefix(path: str, prefix: str) -> bool:
    # Segment match: "/health" covers "/health/db", not "/healthy-recipes"
    base = prefix.rstrip("/")
    return path == base or path.startswith(base + "/")


def should_gate(method: str, path: str, config: BotPolicyConfig) -> bool:
    if method.upper() not in GATED_METHODS:
        return False
    if any(_under_prefix(path, prefix) for prefix in config.exempt_path_prefixes):
        return False

    normalized = normalize_path(path)
    last_segment = normalized.rsplit("/", 1)[-1]
    if "." in last_segment:
        listed = config.allowed_paths_for_authorized_bots | config.ai_public_paths
        return normalized in listed
    return True


class BotGateMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, gate: TrafficGate | None = None):
        super().__init__(app)
        self._gate = gate

    def _resolve_gate(self, request: Request) -> TrafficGate | None:
        return self._gate or getattr(request.app.state, "gate", None)

    async def dispatch(self, request: Request, call_next):
        gate = self._resolve_gate(request)
        path = request.url.path

        if gate is None or not should_gate(request.method, path, gate.policy):
            return await call_next(request)

        try:
            result = gate.evaluate(
                path=path,
                headers=dict(request.headers),
                cookies=request.cookies,
                peer=request.client.host if request.client else None,
                query=request.url.query,
            )
        except Exception as e:
            logger.error("bot_gate_error", path=path, error=str(e))
            return await call_next(request)

        decision = result.decision
        verdict = result.verdict

        if decision.action is PolicyAction.BLOCK:
            logger.warning("bot_blocked", ip=result.identity.ip, path=path, rule=decision.rule)
            return PlainTextResponse("Forbidden", status_code=403, headers={"X-Bot-Decision": "block"})

        if decision.action is PolicyAction.REDIRECT_PAYWALL:
            logger.info("bot_redirected",
                        ip=result.identity.ip,
                        path=path,
                        category=verdict.as_dict()["category"],
                        confidence=verdict.confidence,
                        rule=decision.rule)
            response = RedirectResponse(url=decision.redirect_target, status_code=302)
            response.headers["X-Bot-Decision"] = "paywall"
            response.headers["Cache-Control"] = "no-store"
            return response

        request.state.bot_verdict = verdict
        request.state.bot_decision = decision
        response: Response = await call_next(request)
        response.headers["X-Bot-Decision"] = "allow"
        return response
