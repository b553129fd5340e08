"""
Behavioral timing analysis — the only long-lived state in the pipeline.

Per identity we keep a TimingWindow:
  - last_seen        timestamp of the previous request (seconds)
  - intervals        last N inter-request gaps in ms   (FIFO, N=10)
  - paths            last N requested paths            (FIFO, N=10)

Two checks, run only once >= 3 intervals are buffered:
  1. Regularity: mean absolute deviation < 200ms AND mean < 5s.
     Humans pause irregularly; a script on a fixed sleep doesn't.
  2. Sequential traversal: >= 5 buffered paths, all distinct.
     Humans revisit and backtrack; sitemap walkers never do.

Neither check is authoritative; each adds a medium behavior signal.

Windows live in BehaviorCache: one lock around the whole
lookup-or-create + mutate + evaluate step, TTL eviction swept on access,
and a hard cap on entries. Contention is low: collisions need the same
IP + UA inside the TTL.
"""

import threading
import time
from collections import OrderedDict, deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

from app.core.identity import ClientIdentity
from app.core.signals import Signal, SignalSource, Strength

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_WINDOW_SIZE = 10
DEFAULT_TTL_SECONDS = 60.0

MIN_INTERVAL_SAMPLES = 3
REGULARITY_MAX_DEVIATION_MS = 200.0
REGULARITY_MAX_MEAN_MS = 5000.0
SEQUENTIAL_MIN_PATHS = 5


@dataclass
class TimingWindow:
    size: int = DEFAULT_WINDOW_SIZE
    last_seen: float | None = None
    intervals: deque = field(init=False)
    paths: deque = field(init=False)

    def __post_init__(self):
        self.intervals = deque(maxlen=self.size)
        self.paths = deque(maxlen=self.size)

    def reset(self) -> None:
        self.last_seen = None
        self.intervals.clear()
        self.paths.clear()

    def is_consistent(self) -> bool:
        if self.intervals.maxlen != self.size or self.paths.maxlen != self.size:
            return False
        if self.intervals and self.last_seen is None:
            return False
        return all(i >= 0 for i in self.intervals)

    def record(self, path: str, now: float) -> None:
        """Push one request into the window. Bad state counts as no history."""
        if not self.is_consistent():
            self.__post_init__()
            self.last_seen = None

        if self.last_seen is not None:
            elapsed_ms = (now - self.last_seen) * 1000.0
            if elapsed_ms < 0:
                # Clock went backwards: start over
                self.reset()
            else:
                self.intervals.append(elapsed_ms)

        self.paths.append(path)
        self.last_seen = now


def mean_absolute_deviation(values: Sequence[float]) -> tuple[float, float]:
    """Return (mean, mean absolute deviation)."""
    mean = sum(values) / len(values)
    deviation = sum(abs(v - mean) for v in values) / len(values)
    return mean, deviation


def timing_is_regular(
    intervals: Sequence[float],
    max_deviation_ms: float = REGULARITY_MAX_DEVIATION_MS,
    max_mean_ms: float = REGULARITY_MAX_MEAN_MS,
) -> bool:
    if len(intervals) < MIN_INTERVAL_SAMPLES:
        return False
    mean, deviation = mean_absolute_deviation(intervals)
    return deviation < max_deviation_ms and mean < max_mean_ms


def is_sequential_traversal(paths: Sequence[str], min_paths: int = SEQUENTIAL_MIN_PATHS) -> bool:
    return len(paths) >= min_paths and len(set(paths)) == len(paths)


@dataclass
class _Entry:
    window: TimingWindow
    touched: float


class BehaviorCache:
    """Thread-safe ClientIdentity -> TimingWindow map with TTL + size bound."""

    def __init__(
        self,
        window_size: int = DEFAULT_WINDOW_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 50_000,
        sweep_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_size = window_size
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._lock = threading.Lock()
        # Ordered by last touch, oldest first
        self._entries: OrderedDict[ClientIdentity, _Entry] = OrderedDict()
        self._last_sweep: float | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: ClientIdentity) -> bool:
        return identity in self._entries

    def now(self) -> float:
        return self._clock()

    def update(
        self,
        identity: ClientIdentity,
        fn: Callable[[TimingWindow, float], T],
        now: float | None = None,
    ) -> T:
        """Lookup-or-create the window for `identity` and run `fn(window, now)` on it, atomically."""
        with self._lock:
            # Clock read under the lock keeps each window in timestamp order
            now = self._clock() if now is None else now
            self._maybe_sweep(now)

            entry = self._entries.get(identity)
            if entry is None or self._expired(entry, now):
                entry = _Entry(window=TimingWindow(size=self.window_size), touched=now)
                self._entries[identity] = entry
            else:
                entry.touched = now
            self._entries.move_to_end(identity)

            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

            return fn(entry.window, now)

    def peek(self, identity: ClientIdentity) -> TimingWindow | None:
        with self._lock:
            entry = self._entries.get(identity)
            return entry.window if entry else None

    def purge_expired(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            return self._purge(now)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _expired(self, entry: _Entry, now: float) -> bool:
        return now - entry.touched > self.ttl_seconds

    def _maybe_sweep(self, now: float) -> None:
        if self._last_sweep is None or now - self._last_sweep >= self.sweep_interval:
            removed = self._purge(now)
            self._last_sweep = now
            if removed:
                logger.debug("behavior_cache_swept", removed=removed, size=len(self._entries))

    def _purge(self, now: float) -> int:
        removed = 0
        while self._entries:
            identity, entry = next(iter(self._entries.items()))
            if not self._expired(entry, now):
                break
            del self._entries[identity]
            removed += 1
        return removed


class TimingAnalyzer:
    """Records each request into its identity's window and flags machine-like cadence."""

    def __init__(self, cache: BehaviorCache | None = None):
        self.cache = cache if cache is not None else BehaviorCache()

    def observe(self, identity: ClientIdentity, path: str, now: float | None = None) -> list[Signal]:
        return self.cache.update(identity, lambda window, at: _record_and_evaluate(window, path, at), now=now)


def _record_and_evaluate(window: TimingWindow, path: str, now: float) -> list[Signal]:
    window.record(path, now)
    return evaluate_window(window)


def evaluate_window(window: TimingWindow) -> list[Signal]:
    signals: list[Signal] = []
    if len(window.intervals) < MIN_INTERVAL_SAMPLES:
        return signals

    if timing_is_regular(list(window.intervals)):
        signals.append(Signal(SignalSource.BEHAVIOR, Strength.MEDIUM, "Suspiciously consistent request timing"))

    if is_sequential_traversal(list(window.paths)):
        signals.append(Signal(SignalSource.BEHAVIOR, Strength.MEDIUM, "Sequential page access pattern"))

    return signals
