"""
Shared types for the classification pipeline.

Every extractor returns Signals (source, strength, reason) and
the aggregator in bot_detection.py is the only place they get combined.
Weights live in one table here so the three extractors can't drift apart.
"""

from dataclasses import dataclass, field
from enum import Enum


class BotCategory(str, Enum):
    HUMAN = "human"
    SEARCH_ENGINE = "search_engine"
    CRAWLER = "crawler"
    AUTOMATION_TOOL = "automation_tool"
    AI_ASSISTANT = "ai_assistant"
    SCRAPING_TOOL = "scraping_tool"
    GENERIC_BOT = "generic_bot"
    UNKNOWN = "unknown"


class SignalSource(str, Enum):
    PATTERN = "pattern"
    HEADER = "header"
    BEHAVIOR = "behavior"


class Strength(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Confidence points per (source, strength)
WEIGHTS: dict[tuple[SignalSource, Strength], int] = {
    (SignalSource.PATTERN, Strength.LOW): 30,
    (SignalSource.PATTERN, Strength.MEDIUM): 60,
    (SignalSource.PATTERN, Strength.HIGH): 90,
    (SignalSource.HEADER, Strength.LOW): 15,
    (SignalSource.HEADER, Strength.MEDIUM): 30,
    (SignalSource.BEHAVIOR, Strength.MEDIUM): 40,
}

AUTHORIZED_CONFIDENCE = 100
MAX_CONFIDENCE = 100


@dataclass(frozen=True)
class Signal:
    source: SignalSource
    strength: Strength
    reason: str

    @property
    def weight(self) -> int:
        return WEIGHTS.get((self.source, self.strength), 0)


@dataclass
class RequestSignals:
    """Per-request inputs for the extractors. Header names are lower-cased."""
    user_agent: str | None
    ip: str
    path: str
    timestamp: float | None  # None: read the behavior cache clock
    headers: dict[str, str] = field(default_factory=dict)

