"""
User-Agent pattern matcher.

Tables are checked in priority order and the FIRST table with a substring
hit wins; matches are never summed across tables. A Googlebot UA that
also contains "bot" is a search engine, not a generic bot.

Matching is plain `in` on the lower-cased UA; no regex.
"""

from dataclasses import dataclass

from user_agents import parse as parse_ua

from app.core.signals import BotCategory, Signal, SignalSource, Strength


@dataclass(frozen=True)
class CategoryTable:
    category: BotCategory
    strength: Strength
    label: str
    patterns: tuple[str, ...]
    authorized: bool = False


CATEGORY_TABLES: tuple[CategoryTable, ...] = (
    CategoryTable(
        category=BotCategory.SEARCH_ENGINE,
        strength=Strength.HIGH,
        label="Search engine bot user agent",
        authorized=True,
        patterns=(
            "googlebot", "bingbot", "yandexbot", "duckduckbot", "baiduspider",
            "slurp", "applebot", "facebookexternalhit", "twitterbot",
            "linkedinbot", "pinterestbot",
        ),
    ),
    CategoryTable(
        category=BotCategory.CRAWLER,
        strength=Strength.HIGH,
        label="Known crawler user agent",
        patterns=(
            "ahrefsbot", "semrushbot", "mj12bot", "dotbot", "rogerbot",
            "screaming frog", "crawler", "spider",
        ),
    ),
    CategoryTable(
        category=BotCategory.AI_ASSISTANT,
        strength=Strength.HIGH,
        label="AI assistant user agent",
        patterns=(
            "gptbot", "chatgpt-user", "oai-searchbot", "claudebot", "claude-web",
            "claude/", "anthropic-ai", "perplexitybot", "perplexity", "ccbot",
            "google-extended", "bytespider", "cohere-ai", "youbot",
            "meta-externalagent",
        ),
    ),
    CategoryTable(
        category=BotCategory.SCRAPING_TOOL,
        strength=Strength.HIGH,
        label="Scraping service user agent",
        patterns=(
            "scrapingbee", "scraperapi", "brightdata", "zyte", "apify",
            "diffbot", "octoparse", "import.io",
        ),
    ),
    CategoryTable(
        category=BotCategory.AUTOMATION_TOOL,
        strength=Strength.MEDIUM,
        label="Automation tool detected",
        patterns=(
            "headlesschrome", "headless", "puppeteer", "playwright", "selenium",
            "webdriver", "phantomjs", "python-requests", "python-urllib",
            "curl/", "wget/", "scrapy", "go-http-client", "node-fetch", "axios/",
        ),
    ),
    CategoryTable(
        category=BotCategory.GENERIC_BOT,
        strength=Strength.LOW,
        label="Generic bot pattern",
        patterns=("bot", "scrape", "crawl"),
    ),
)


@dataclass(frozen=True)
class PatternMatch:
    category: BotCategory
    strength: Strength
    authorized: bool
    reason: str
    pattern: str | None = None

    def to_signal(self) -> Signal:
        return Signal(source=SignalSource.PATTERN, strength=self.strength, reason=self.reason)


MISSING_UA_MATCH = PatternMatch(
    category=BotCategory.UNKNOWN,
    strength=Strength.MEDIUM,
    authorized=False,
    reason="Missing User-Agent header",
)


def match_user_agent(ua_lower: str | None) -> PatternMatch | None:
    """Return the highest-priority category match for a lower-cased UA, or None."""
    if not ua_lower or not ua_lower.strip():
        # Real browsers always send one
        return MISSING_UA_MATCH

    for table in CATEGORY_TABLES:
        for pattern in table.patterns:
            if pattern in ua_lower:
                return PatternMatch(
                    category=table.category,
                    strength=table.strength,
                    authorized=table.authorized,
                    reason=f"{table.label} ({pattern})",
                    pattern=pattern,
                )

    # Last resort: the ua-parser bot database
    try:
        is_bot = parse_ua(ua_lower).is_bot
    except Exception:
        is_bot = False
    if is_bot:
        return PatternMatch(
            category=BotCategory.GENERIC_BOT,
            strength=Strength.LOW,
            authorized=False,
            reason="User-Agent parser flags bot",
        )
    return None
