"""Tests for the timing window, behavior cache and timing analyzer."""

import threading

import pytest

from app.core.behavior import (
    BehaviorCache,
    TimingAnalyzer,
    TimingWindow,
    is_sequential_traversal,
    mean_absolute_deviation,
    timing_is_regular,
)
from app.core.identity import build_identity

IDENT = build_identity("203.0.113.10", "test-agent/1.0")

REGULAR_REASON = "Suspiciously consistent request timing"
SEQUENTIAL_REASON = "Sequential page access pattern"


def _replay(analyzer, timestamps, paths, identity=IDENT):
    signals = []
    for ts, path in zip(timestamps, paths):
        signals = analyzer.observe(identity, path, now=ts)
    return [s.reason for s in signals]


class TestTimingWindow:
    def test_first_request_has_no_interval(self):
        w = TimingWindow()
        w.record("/a", now=100.0)
        assert list(w.intervals) == []
        assert list(w.paths) == ["/a"]
        assert w.last_seen == 100.0

    def test_interval_in_milliseconds(self):
        w = TimingWindow()
        w.record("/a", now=100.0)
        w.record("/b", now=101.5)
        assert list(w.intervals) == [pytest.approx(1500.0)]

    def test_buffers_never_exceed_ten(self):
        w = TimingWindow()
        for i in range(12):
            w.record(f"/p{i}", now=float(i))
        assert len(w.intervals) == 10
        assert len(w.paths) == 10
        # Oldest evicted first
        assert list(w.paths) == [f"/p{i}" for i in range(2, 12)]

    def test_clock_going_backwards_resets(self):
        w = TimingWindow()
        w.record("/a", now=10.0)
        w.record("/b", now=11.0)
        w.record("/c", now=5.0)
        assert list(w.intervals) == []
        assert list(w.paths) == ["/c"]
        assert w.last_seen == 5.0

    def test_inconsistent_state_treated_as_no_history(self):
        w = TimingWindow()
        w.intervals.append(-5.0)  # interval with no last_seen: corrupt
        w.record("/x", now=1.0)
        assert list(w.intervals) == []
        assert list(w.paths) == ["/x"]


class TestChecks:
    def test_mean_absolute_deviation(self):
        mean, mad = mean_absolute_deviation([200, 4000, 800, 3500])
        assert mean == pytest.approx(2125.0)
        assert mad == pytest.approx(1625.0)

    def test_regular_needs_three_samples(self):
        assert timing_is_regular([1000, 1000]) is False
        assert timing_is_regular([1000, 1000, 1000]) is True

    def test_regular_but_slow_not_flagged(self):
        assert timing_is_regular([9000, 9010, 8990]) is False

    def test_sequential(self):
        assert is_sequential_traversal(["/a", "/b", "/c", "/d", "/e"]) is True
        assert is_sequential_traversal(["/a", "/b", "/a", "/c", "/d"]) is False
        assert is_sequential_traversal(["/a", "/b", "/c", "/d"]) is False


class TestTimingAnalyzer:
    def test_fixed_cadence_flags_timing(self):
        analyzer = TimingAnalyzer(BehaviorCache())
        # 1000ms cadence, every gap within ±50ms
        timestamps = [0.0, 1.03, 2.0, 2.98, 4.01]
        reasons = _replay(analyzer, timestamps, ["/menu"] * 5)
        assert REGULAR_REASON in reasons

    def test_irregular_cadence_not_flagged(self):
        analyzer = TimingAnalyzer(BehaviorCache())
        # gaps: 200, 4000, 800, 3500 ms
        timestamps = [0.0, 0.2, 4.2, 5.0, 8.5]
        reasons = _replay(analyzer, timestamps, ["/menu"] * 5)
        assert REGULAR_REASON not in reasons

    def test_distinct_paths_flag_sequential(self):
        analyzer = TimingAnalyzer(BehaviorCache())
        timestamps = [0.0, 0.2, 4.2, 5.0, 8.5]
        reasons = _replay(analyzer, timestamps, ["/", "/menu", "/about", "/blog", "/contact"])
        assert SEQUENTIAL_REASON in reasons

    def test_repeated_path_not_sequential(self):
        analyzer = TimingAnalyzer(BehaviorCache())
        timestamps = [0.0, 0.2, 4.2, 5.0, 8.5]
        reasons = _replay(analyzer, timestamps, ["/", "/menu", "/", "/blog", "/contact"])
        assert SEQUENTIAL_REASON not in reasons

    def test_sparse_history_never_flags(self):
        analyzer = TimingAnalyzer(BehaviorCache())
        # Three requests = two intervals: below the sample minimum
        reasons = _replay(analyzer, [0.0, 1.0, 2.0], ["/a", "/b", "/c"])
        assert reasons == []

    def test_identities_tracked_separately(self):
        cache = BehaviorCache()
        analyzer = TimingAnalyzer(cache)
        other = build_identity("203.0.113.11", "test-agent/1.0")
        analyzer.observe(IDENT, "/a", now=0.0)
        analyzer.observe(other, "/b", now=0.5)
        assert list(cache.peek(IDENT).paths) == ["/a"]
        assert list(cache.peek(other).paths) == ["/b"]


class TestBehaviorCache:
    def test_lazy_creation(self):
        cache = BehaviorCache()
        assert IDENT not in cache
        cache.update(IDENT, lambda w, now: w.record("/a", now), now=0.0)
        assert IDENT in cache
        assert len(cache) == 1

    def test_expired_entry_recreated_fresh(self):
        cache = BehaviorCache(ttl_seconds=60, sweep_interval=1000)
        cache.update(IDENT, lambda w, now: w.record("/a", now), now=0.0)
        cache.update(IDENT, lambda w, now: w.record("/b", now), now=61.0)
        window = cache.peek(IDENT)
        assert list(window.paths) == ["/b"]
        assert list(window.intervals) == []

    def test_activity_keeps_entry_alive(self):
        cache = BehaviorCache(ttl_seconds=60, sweep_interval=1000)
        for t in (0.0, 50.0, 100.0):
            cache.update(IDENT, lambda w, now: w.record("/a", now), now=t)
        assert len(cache.peek(IDENT).paths) == 3

    def test_purge_expired(self):
        cache = BehaviorCache(ttl_seconds=60)
        a = build_identity("198.51.100.1", "ua")
        b = build_identity("198.51.100.2", "ua")
        cache.update(a, lambda w, now: None, now=0.0)
        cache.update(b, lambda w, now: None, now=30.0)
        assert cache.purge_expired(now=70.0) == 1
        assert a not in cache
        assert b in cache

    def test_sweep_on_access(self):
        cache = BehaviorCache(ttl_seconds=60, sweep_interval=10)
        stale = build_identity("198.51.100.1", "ua")
        cache.update(stale, lambda w, now: None, now=0.0)
        cache.update(IDENT, lambda w, now: None, now=100.0)
        assert stale not in cache

    def test_max_entries_evicts_least_recent(self):
        cache = BehaviorCache(max_entries=2, sweep_interval=1000)
        idents = [build_identity(f"198.51.100.{i}", "ua") for i in range(3)]
        for i, ident in enumerate(idents):
            cache.update(ident, lambda w, now: None, now=float(i))
        assert len(cache) == 2
        assert idents[0] not in cache

    def test_injected_clock(self):
        now = [500.0]
        cache = BehaviorCache(clock=lambda: now[0])
        analyzer = TimingAnalyzer(cache)
        analyzer.observe(IDENT, "/a")
        now[0] = 501.0
        analyzer.observe(IDENT, "/b")
        assert list(cache.peek(IDENT).intervals) == [pytest.approx(1000.0)]

    def test_concurrent_updates_same_identity(self):
        cache = BehaviorCache()
        analyzer = TimingAnalyzer(cache)
        errors = []

        def hammer(worker):
            try:
                for i in range(200):
                    analyzer.observe(IDENT, f"/w{worker}/{i}")
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=hammer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        window = cache.peek(IDENT)
        assert len(window.paths) == 10
        assert len(window.intervals) == 10
        assert all(i >= 0 for i in window.intervals)
