"""
Header heuristic — browser-universal headers and client-hint consistency.

  - accept-language / accept-encoding: every mainstream browser sends both.
  - sec-fetch-mode=navigate without sec-ch-ua: modern browsers send the
    fetch metadata and the client hints together; naive scripts send
    neither or only one. The check applies whatever the UA claims, so a
    script can't dodge it by copying a Firefox or Safari UA.

Contributions are small; the aggregator keeps this extractor below the bot
threshold on its own, which is what keeps real Firefox and Safari
visitors (no client hints) on the human side.
"""

from collections.abc import Mapping

from app.core.signals import Signal, SignalSource, Strength


def inspect_headers(headers: Mapping[str, str], user_agent: str | None = None) -> list[Signal]:
    """Score browser-typical headers. `headers` must have lower-cased names."""
    signals: list[Signal] = []

    if not headers.get("accept-language"):
        signals.append(Signal(SignalSource.HEADER, Strength.LOW, "Missing Accept-Language header"))

    if not headers.get("accept-encoding"):
        signals.append(Signal(SignalSource.HEADER, Strength.LOW, "Missing Accept-Encoding header"))

    fetch_mode = (headers.get("sec-fetch-mode") or "").strip().lower()
    if fetch_mode == "navigate" and not headers.get("sec-ch-ua"):
        signals.append(Signal(
            SignalSource.HEADER,
            Strength.MEDIUM,
            "Missing modern browser identifiers (navigate without client hints)",
        ))

    return signals
