"""
Bot detection — confidence aggregation.

Produces a confidence 0–100:
  0    = definitely human
  100  = definitely bot

Inputs (computed in this order, reasons kept in the same order):
  1. User-Agent pattern match       (patterns.py)
  2. Header sanity                  (header_heuristics.py)
  3. Behavioral timing              (behavior.py)

Rules:
  - Contributions are summed and capped at 100.
  - Header signals alone are held below the threshold.
  - An authorized search-engine match is ground truth: confidence is forced
    to 100 and authorized=True whatever the headers or timing say, so
    indexing bots are never penalized for incidental quirks.
  - is_bot = confidence >= threshold.
"""

from dataclasses import dataclass, field

import structlog

from app.core.behavior import TimingAnalyzer
from app.core.header_heuristics import inspect_headers
from app.core.identity import ClientIdentity, build_identity
from app.core.patterns import PatternMatch, match_user_agent
from app.core.policy_config import BotPolicyConfig
from app.core.signals import (
    AUTHORIZED_CONFIDENCE,
    MAX_CONFIDENCE,
    BotCategory,
    RequestSignals,
    Signal,
)

logger = structlog.get_logger()

DEFAULT_THRESHOLD = 70


@dataclass
class Verdict:
    is_bot: bool
    confidence: int
    category: BotCategory
    authorized: bool = False
    reasons: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "is_bot": self.is_bot,
            "confidence": self.confidence,
            "category": self.category.value if isinstance(self.category, BotCategory) else str(self.category),
            "authorized": self.authorized,
            "reasons": list(self.reasons),
        }


def aggregate(
    pattern: PatternMatch | None,
    header_signals: list[Signal],
    behavior_signals: list[Signal],
    threshold: int = DEFAULT_THRESHOLD,
) -> Verdict:
    """Combine extractor outputs into one Verdict."""
    reasons: list[str] = []
    score = 0

    if pattern is not None:
        score += pattern.to_signal().weight
        reasons.append(pattern.reason)

    header_score = sum(s.weight for s in header_signals)
    # Header quirks add weight, they never make the call on their own
    score += min(header_score, max(threshold - 1, 0))
    reasons.extend(s.reason for s in header_signals)

    score += sum(s.weight for s in behavior_signals)
    reasons.extend(s.reason for s in behavior_signals)

    if pattern is not None and pattern.authorized:
        return Verdict(
            is_bot=True,
            confidence=AUTHORIZED_CONFIDENCE,
            category=BotCategory.SEARCH_ENGINE,
            authorized=True,
            reasons=reasons,
        )

    confidence = min(score, MAX_CONFIDENCE)
    is_bot = confidence >= threshold

    if pattern is not None:
        category = pattern.category
    elif is_bot:
        category = BotCategory.GENERIC_BOT
    else:
        category = BotCategory.HUMAN

    return Verdict(
        is_bot=is_bot,
        confidence=confidence,
        category=category,
        authorized=False,
        reasons=reasons,
    )


class BotDetector:
    """Runs the three extractors against one request and aggregates them."""

    def __init__(self, analyzer: TimingAnalyzer | None = None):
        self.analyzer = analyzer if analyzer is not None else TimingAnalyzer()

    def classify(
        self,
        signals: RequestSignals,
        config: BotPolicyConfig,
        identity: ClientIdentity | None = None,
    ) -> Verdict:
        identity = identity or build_identity(signals.ip, signals.user_agent)
        ua_lower = (signals.user_agent or "").lower()

        pattern = _safe(match_user_agent, ua_lower, default=None)
        header_signals = _safe(inspect_headers, signals.headers, signals.user_agent, default=[])
        behavior_signals = _safe(
            self.analyzer.observe, identity, signals.path, signals.timestamp, default=[],
        )

        return aggregate(pattern, header_signals, behavior_signals, config.confidence_threshold)


def _safe(fn, *args, default):
    """Extractor failures degrade to 'no signal'."""
    try:
        return fn(*args)
    except Exception as e:
        logger.warning("signal_extractor_failed", extractor=getattr(fn, "__name__", repr(fn)), error=str(e))
        return default


def score_request(
    user_agent: str | None,
    headers: dict[str, str],
    path: str = "/",
    ip: str = "unknown",
    timestamp: float | None = None,
    config: BotPolicyConfig | None = None,
    detector: BotDetector | None = None,
) -> Verdict:
    """One-shot classification. A fresh detector has no timing history.

    With a shared `detector`, leave `timestamp` unset so the behavior cache
    stamps the request with its own clock.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    if user_agent is not None:
        lowered["user-agent"] = user_agent
    signals = RequestSignals(
        user_agent=user_agent,
        ip=ip,
        path=path,
        timestamp=timestamp,
        headers=lowered,
    )
    detector = detector if detector is not None else BotDetector()
    return detector.classify(signals, config or BotPolicyConfig())
