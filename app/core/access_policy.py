"""
Access policy — turns a Verdict into ALLOW / REDIRECT_PAYWALL / BLOCK.

Rule order (first match wins):
  1. policy disabled                       -> ALLOW   (kill switch)
  2. request is for the paywall itself     -> ALLOW   (no redirect loops)
  3. valid bypass credential               -> ALLOW   ("request access" escape hatch)
  4. trusted IP                            -> ALLOW
     blocked IP                            -> BLOCK
  5. not a bot                             -> ALLOW
  6. AI assistant                          -> ALLOW on always-public paths, else paywall
  7. unauthorized bot                      -> paywall
  8. authorized bot                        -> ALLOW on indexable paths, else paywall

Redirects carry the original URL as returnUrl plus category/confidence
for the paywall page's diagnostics.

Pure function of its inputs. Never raises.
"""

import hmac
import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode

from app.core.bot_detection import Verdict
from app.core.policy_config import BotPolicyConfig, normalize_path
from app.core.signals import BotCategory


class PolicyAction(str, Enum):
    ALLOW = "ALLOW"
    REDIRECT_PAYWALL = "REDIRECT_PAYWALL"
    BLOCK = "BLOCK"


@dataclass(frozen=True)
class PolicyDecision:
    action: PolicyAction
    rule: str
    redirect_target: str | None = None

    def as_dict(self) -> dict:
        return {
            "action": self.action.value,
            "rule": self.rule,
            "redirect_target": self.redirect_target,
        }


def _allow(rule: str) -> PolicyDecision:
    return PolicyDecision(action=PolicyAction.ALLOW, rule=rule)


def is_paywall_path(path: str, config: BotPolicyConfig) -> bool:
    normalized = normalize_path(path)
    return normalized == config.paywall_path or normalized.startswith(config.paywall_path + "/")


def build_paywall_url(
    config: BotPolicyConfig,
    return_url: str,
    category: str,
    confidence: int,
    source: str = "bot_detection",
) -> str:
    # urlencode quotes every value, slashes included: "/menu" becomes "%2Fmenu"
    query = urlencode({
        "source": source,
        "returnUrl": return_url,
        "category": category,
        "confidence": confidence,
    })
    return f"{config.paywall_path}?{query}"


def _coerce_category(category) -> BotCategory | None:
    if isinstance(category, BotCategory):
        return category
    try:
        return BotCategory(category)
    except ValueError:
        return None


def _canonical_ip(ip: str | None) -> str | None:
    if not ip:
        return None
    try:
        return str(ipaddress.ip_address(ip.strip()))
    except ValueError:
        return None


def decide(
    verdict: Verdict,
    requested_path: str,
    has_valid_bypass: bool,
    config: BotPolicyConfig,
    return_url: str | None = None,
    client_ip: str | None = None,
) -> PolicyDecision:
    if not config.enabled:
        return _allow("disabled")

    path = requested_path or "/"
    if is_paywall_path(path, config):
        return _allow("paywall_path")

    if has_valid_bypass:
        return _allow("bypass")

    client_ip = _canonical_ip(client_ip)
    if client_ip:
        if client_ip in config.trusted_ips:
            return _allow("trusted_ip")
        if client_ip in config.blocked_ips:
            return PolicyDecision(action=PolicyAction.BLOCK, rule="blocked_ip")

    if not verdict.is_bot:
        return _allow("human")

    category = _coerce_category(verdict.category)
    normalized = normalize_path(path)
    target_return = return_url or path
    confidence = int(verdict.confidence)

    if category is BotCategory.AI_ASSISTANT:
        if normalized in config.ai_public_paths:
            return _allow("ai_public_path")
        return PolicyDecision(
            action=PolicyAction.REDIRECT_PAYWALL,
            rule="ai_assistant",
            redirect_target=build_paywall_url(config, target_return, category.value, confidence),
        )

    # Unrecognized categories are never trusted as authorized
    if not verdict.authorized or category is None:
        label = category.value if category else BotCategory.UNKNOWN.value
        return PolicyDecision(
            action=PolicyAction.REDIRECT_PAYWALL,
            rule="unauthorized_bot",
            redirect_target=build_paywall_url(config, target_return, label, confidence),
        )

    if normalized in config.allowed_paths_for_authorized_bots:
        return _allow("authorized_bot")
    return PolicyDecision(
        action=PolicyAction.REDIRECT_PAYWALL,
        rule="authorized_bot_restricted_path",
        redirect_target=build_paywall_url(
            config, target_return, category.value, confidence, source="authorized_bot",
        ),
    )


def has_valid_bypass(
    cookies: Mapping[str, str],
    headers: Mapping[str, str],
    secret: str,
    cookie_name: str = "bot_bypass_token",
    header_name: str = "x-bypass-token",
) -> bool:
    """Shared-secret check on the bypass cookie or header. Empty secret disables bypass."""
    if not secret:
        return False
    for presented in (cookies.get(cookie_name), headers.get(header_name.lower())):
        if presented and hmac.compare_digest(presented.encode(), secret.encode()):
            return True
    return False
