"""
Bot policy configuration — the single validated structure the access
policy engine reads at decision time.

The live policy sits in a PolicyStore and is swapped whole on update
(PUT /admin/bot-policy), so readers always see one consistent snapshot.
"""

import ipaddress
import threading

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.config import Settings

DEFAULT_AUTHORIZED_BOT_PATHS = frozenset({
    "/", "/about", "/contact", "/robots.txt", "/sitemap.xml",
})

# Always public, even for AI assistants
DEFAULT_AI_PUBLIC_PATHS = frozenset({
    "/", "/robots.txt", "/sitemap.xml", "/manifest.json", "/favicon.ico", "/llms.txt",
})

DEFAULT_EXEMPT_PREFIXES = ("/api/", "/assets/", "/static/", "/admin/", "/health")


def normalize_path(path: str) -> str:
    """Strip trailing slashes so '/menu/' and '/menu' compare equal. Root stays '/'."""
    if not path:
        return "/"
    stripped = path.rstrip("/")
    return stripped or "/"


class BotPolicyConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    confidence_threshold: int = Field(default=70, ge=0, le=100)
    allowed_paths_for_authorized_bots: frozenset[str] = DEFAULT_AUTHORIZED_BOT_PATHS
    ai_public_paths: frozenset[str] = DEFAULT_AI_PUBLIC_PATHS
    paywall_path: str = "/paywall"
    blocked_ips: frozenset[str] = frozenset()
    trusted_ips: frozenset[str] = frozenset()
    exempt_path_prefixes: tuple[str, ...] = DEFAULT_EXEMPT_PREFIXES

    @field_validator("allowed_paths_for_authorized_bots", "ai_public_paths")
    @classmethod
    def _paths_absolute(cls, paths: frozenset[str]) -> frozenset[str]:
        for p in paths:
            if not p.startswith("/"):
                raise ValueError(f"path must start with '/': {p!r}")
        return frozenset(normalize_path(p) for p in paths)

    @field_validator("paywall_path")
    @classmethod
    def _paywall_absolute(cls, path: str) -> str:
        if not path.startswith("/") or path == "/":
            raise ValueError("paywall_path must be an absolute, non-root path")
        return normalize_path(path)

    @field_validator("exempt_path_prefixes")
    @classmethod
    def _prefixes_absolute(cls, prefixes: tuple[str, ...]) -> tuple[str, ...]:
        for p in prefixes:
            if not p.startswith("/"):
                raise ValueError(f"prefix must start with '/': {p!r}")
        return prefixes

    @field_validator("blocked_ips", "trusted_ips")
    @classmethod
    def _valid_ips(cls, ips: frozenset[str]) -> frozenset[str]:
        # Canonical form, so "::0001" and "::1" match the same client
        return frozenset(str(ipaddress.ip_address(ip.strip())) for ip in ips)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BotPolicyConfig":
        return cls(
            enabled=settings.bot_policy_enabled,
            confidence_threshold=settings.bot_confidence_threshold,
            paywall_path=settings.paywall_path,
        )


class PolicyStore:
    """Holds the live BotPolicyConfig; replace() is an atomic swap."""

    def __init__(self, initial: BotPolicyConfig | None = None):
        self._lock = threading.Lock()
        self._config = initial if initial is not None else BotPolicyConfig()

    def get(self) -> BotPolicyConfig:
        return self._config

    def replace(self, config: BotPolicyConfig) -> BotPolicyConfig:
        with self._lock:
            previous = self._config
            self._config = config
        return previous
