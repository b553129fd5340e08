"""
Paywall landing — where REDIRECT_PAYWALL decisions point.

Mounted at the policy's paywall_path when the app is built (TG_PAYWALL_PATH,
default /paywall). The admin API refuses to move paywall_path at runtime,
so redirects and this route always agree.

Never gated itself (the policy forces ALLOW on this path), so a bot that
lands here can't be bounced back into another redirect.
"""

from fastapi import FastAPI, Request

from app.config import get_settings


def _safe_return_url(raw: str | None) -> str:
    # Same-site relative paths only; no open redirect via returnUrl
    if not raw or not raw.startswith("/") or raw.startswith("//"):
        return "/"
    return raw


async def paywall(request: Request):
    settings = get_settings()
    params = request.query_params
    confidence = params.get("confidence")
    return {
        "detail": "Automated access to this content requires a license.",
        "return_url": _safe_return_url(params.get("returnUrl")),
        "source": params.get("source", "bot_detection"),
        "category": params.get("category"),
        "confidence": int(confidence) if confidence and confidence.isdigit() else None,
        "request_access": {
            "cookie": settings.bypass_cookie_name,
            "header": settings.bypass_header_name,
        },
    }


def mount_paywall(app: FastAPI, paywall_path: str) -> None:
    app.add_api_route(paywall_path, paywall, methods=["GET"], tags=["paywall"], name="paywall")
    app.state.paywall_path = paywall_path
