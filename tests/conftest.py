"""Pytest configuration."""

import os

import pytest

# Ensure test environment
os.environ.setdefault("TG_ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("TG_BYPASS_TOKEN", "test-bypass-token")
os.environ.setdefault("TG_AUDIT_SQL_ENABLED", "false")
os.environ.setdefault("TG_DEBUG", "true")


CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

FIREFOX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"

GPTBOT_UA = "Mozilla/5.0 (compatible; GPTBot/1.0; +https://openai.com/gptbot)"

GOOGLEBOT_UA = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"

CHROME_HEADERS = {
    "user-agent": CHROME_UA,
    "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "accept-language": "en-US,en;q=0.9",
    "accept-encoding": "gzip, deflate, br",
    "sec-ch-ua": '"Chromium";v="120", "Google Chrome";v="120"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"macOS"',
    "sec-fetch-dest": "document",
    "sec-fetch-mode": "navigate",
    "sec-fetch-site": "none",
    "sec-fetch-user": "?1",
}


@pytest.fixture
def chrome_headers():
    return dict(CHROME_HEADERS)


ADMIN_HEADERS = {"X-API-Key": "test-admin-key"}


@pytest.fixture
def app():
    """Fresh app per test, with a catch-all page standing in for site content."""
    from fastapi import Request

    from app.main import create_app

    application = create_app()

    @application.get("/{page:path}")
    async def page(page: str, request: Request):
        verdict = getattr(request.state, "bot_verdict", None)
        return {"page": page, "category": verdict.category.value if verdict else None}

    return application


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app, follow_redirects=False) as c:
        yield c


@pytest.fixture
def gate(app):
    return app.state.gate
