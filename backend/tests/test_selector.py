"""Tests for selection/selector.py: scoring, caching, racing and fallback."""

import threading
import time

import pytest

from prometheus_client import REGISTRY

from providers.base import ProviderConfig
from selection import DecisionCache, HealthTracker, ProbeResult, SourceSelector, URLProber


class StaticDirectory:
    def __init__(self, *providers):
        self._providers = {p.id: p for p in providers}
        self.invalidations = 0

    def get(self, provider_id):
        return self._providers.get(provider_id)

    def invalidate(self):
        self.invalidations += 1


class FakeProber:
    """Scripted prober: url -> (status_code, delay_seconds)."""

    timeout = 2.0

    def __init__(self, script=None, default=(200, 0.0)):
        self.script = dict(script or {})
        self.default = default
        self.calls = []
        self.cancelled = []
        self._lock = threading.Lock()

    def probe(self, url, method="GET", provider_id="", token=None):
        with self._lock:
            self.calls.append((url, method))
        status, delay = self.script.get(url, self.default)
        if delay and token is not None and token.wait(delay):
            with self._lock:
                self.cancelled.append(url)
            return ProbeResult(url=url, is_valid=False, error="cancelled")
        if status is None:
            return ProbeResult(url=url, is_valid=False, error="timeout")
        return ProbeResult(url=url, is_valid=200 <= status < 400, status_code=status)


class CountingProber(FakeProber):
    """FakeProber that tracks how many probes run at once."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.in_flight = 0
        self.max_in_flight = 0

    def probe(self, url, method="GET", provider_id="", token=None):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            return super().probe(url, method, provider_id, token)
        finally:
            with self._lock:
                self.in_flight -= 1


def xtream(provider_id, max_conn=10, active=0, priority=None):
    return ProviderConfig(
        id=provider_id, type="xtream", priority=priority,
        streams_urls=(f"http://{provider_id}",),
        details={"max_connections": max_conn, "active_connections": active},
    )


def agtv(provider_id, priority=None):
    return ProviderConfig(id=provider_id, type="agtv", priority=priority)


def movie_sources(*provider_ids):
    return [{"provider_id": pid, "provider_url": "/movie/u/p/603.mkv"} for pid in provider_ids]


def make_selector(directory, sources, prober, clock, race_width=5):
    return SourceSelector(
        lambda title_id, media_type, season, episode: sources,
        directory,
        prober=prober,
        health=HealthTracker(clock=clock),
        cache=DecisionCache(clock=clock),
        clock=clock,
        race_width=race_width,
    )


P1_URL = "http://p1/movie/u/p/603.mkv"
P2_URL = "http://p2/movie/u/p/603.mkv"


def outcome_count(provider, status):
    return REGISTRY.get_sample_value(
        "playarr_probe_outcomes_total", {"provider": provider, "status": status})


class TestScoring:

    def test_prefers_lower_utilization(self, fake_clock):
        directory = StaticDirectory(xtream("p1", 10, 9), xtream("p2", 10, 1))
        selector = make_selector(directory, movie_sources("p1", "p2"), FakeProber(),
                                 fake_clock, race_width=1)

        assert selector.get_best_source("603", "movies", username="alice") == P2_URL

    def test_recent_502s_push_provider_down(self, fake_clock):
        directory = StaticDirectory(xtream("p1", 10, 9), xtream("p2", 10, 1))
        selector = make_selector(directory, movie_sources("p1", "p2"), FakeProber(),
                                 fake_clock, race_width=1)
        selector.health.record_error("p2")

        assert selector.get_best_source("603", "movies", username="alice") == P1_URL

    def test_providers_within_band_take_turns(self, fake_clock):
        # scores -1000 and -900
        directory = StaticDirectory(xtream("p1", 10, 0), xtream("p2", 10, 1))
        selector = make_selector(directory, movie_sources("p1", "p2"), FakeProber(),
                                 fake_clock, race_width=1)

        picks = [selector.get_best_source("603", "movies", username=f"user{i}") for i in range(3)]

        assert picks == [P1_URL, P2_URL, P1_URL]

    def test_gap_of_exactly_200_is_outside_band(self, fake_clock):
        # scores -1000 and -800
        directory = StaticDirectory(xtream("p1", 10, 0), xtream("p2", 10, 2))
        selector = make_selector(directory, movie_sources("p1", "p2"), FakeProber(),
                                 fake_clock, race_width=1)

        picks = [selector.get_best_source("603", "movies", username=f"user{i}") for i in range(3)]

        assert picks == [P1_URL] * 3

    def test_agtv_selections_spread_load(self, fake_clock):
        directory = StaticDirectory(agtv("a1"), agtv("a2"))
        sources = [
            {"provider_id": "a1", "provider_url": "http://a1/stream"},
            {"provider_id": "a2", "provider_url": "http://a2/stream"},
        ]
        selector = make_selector(directory, sources, FakeProber(), fake_clock, race_width=1)

        picks = [selector.get_best_source("603", "movies", username=f"user{i}") for i in range(4)]

        assert picks == ["http://a1/stream", "http://a2/stream"] * 2

    def test_agtv_uses_head_probes(self, fake_clock):
        directory = StaticDirectory(agtv("a1"))
        prober = FakeProber()
        selector = make_selector(directory, [{"provider_id": "a1", "provider_url": "http://a1/s"}],
                                 prober, fake_clock)
        selector.get_best_source("603", "movies", username="alice")
        assert prober.calls == [("http://a1/s", "HEAD")]


class TestDecisionCache:

    def test_cached_decision_skips_probing(self, fake_clock):
        directory = StaticDirectory(xtream("p1"))
        prober = FakeProber()
        selector = make_selector(directory, movie_sources("p1"), prober, fake_clock)

        first = selector.get_best_source("603", "movies", username="alice")
        second = selector.get_best_source("603", "movies", username="alice")

        assert first == second == P1_URL
        assert len(prober.calls) == 1

    def test_cache_is_per_user(self, fake_clock):
        directory = StaticDirectory(xtream("p1"))
        prober = FakeProber()
        selector = make_selector(directory, movie_sources("p1"), prober, fake_clock)

        selector.get_best_source("603", "movies", username="alice")
        selector.get_best_source("603", "movies", username="bob")
        assert len(prober.calls) == 2

    def test_cache_expires(self, fake_clock):
        directory = StaticDirectory(xtream("p1"))
        prober = FakeProber()
        selector = make_selector(directory, movie_sources("p1"), prober, fake_clock)

        selector.get_best_source("603", "movies", username="alice")
        fake_clock.advance(30)
        selector.get_best_source("603", "movies", username="alice")
        assert len(prober.calls) == 2

    def test_502_invalidates_cached_decision(self, fake_clock):
        directory = StaticDirectory(xtream("p1", 10, 9), xtream("p2", 10, 1))
        selector = make_selector(directory, movie_sources("p1", "p2"), FakeProber(),
                                 fake_clock, race_width=1)

        assert selector.get_best_source("603", "movies", username="alice") == P2_URL
        selector.health.record_error("p2", 502)

        assert len(selector.cache) == 0
        assert selector.get_best_source("603", "movies", username="alice") == P1_URL


class TestProbing:

    def test_race_first_valid_wins_and_cancels_losers(self, fake_clock):
        directory = StaticDirectory(agtv("slow1"), agtv("fast"), agtv("slow2"))
        sources = [
            {"provider_id": "slow1", "provider_url": "http://slow1/s"},
            {"provider_id": "fast", "provider_url": "http://fast/s"},
            {"provider_id": "slow2", "provider_url": "http://slow2/s"},
        ]
        prober = FakeProber({"http://slow1/s": (200, 5.0), "http://slow2/s": (200, 5.0)})
        selector = make_selector(directory, sources, prober, fake_clock, race_width=3)

        started = time.monotonic()
        url = selector.get_best_source("603", "movies", username="alice")

        assert url == "http://fast/s"
        assert time.monotonic() - started < 2.0
        deadline = time.monotonic() + 2
        while len(prober.cancelled) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert sorted(prober.cancelled) == ["http://slow1/s", "http://slow2/s"]

    def test_race_is_bounded_and_rest_fall_back_in_order(self, fake_clock):
        ids = [f"p{i}" for i in range(1, 9)]
        urls = [f"http://{pid}/movie/u/p/603.mkv" for pid in ids]
        directory = StaticDirectory(*(xtream(pid, priority=i) for i, pid in enumerate(ids, 1)))
        prober = CountingProber({urls[-1]: (200, 0.0)}, default=(404, 0.05))
        selector = make_selector(directory, movie_sources(*ids), prober, fake_clock, race_width=5)

        assert selector.get_best_source("603", "movies", username="alice") == urls[-1]

        probed = [c[0] for c in prober.calls]
        assert prober.max_in_flight == 5
        assert sorted(probed[:5]) == urls[:5]
        assert probed[5:] == urls[5:]

    def test_race_width_never_exceeds_candidates(self, fake_clock):
        directory = StaticDirectory(xtream("p1"), xtream("p2"))
        prober = CountingProber(default=(404, 0.05))
        selector = make_selector(directory, movie_sources("p1", "p2"), prober, fake_clock)

        assert selector.get_best_source("603", "movies", username="alice") is None
        assert prober.max_in_flight == 2
        assert len(prober.calls) == 2

    def test_losing_url_checks_are_cancelled(self, fake_clock, http_server):
        ids = ["race-slow1", "race-fast", "race-slow2"]
        directory = StaticDirectory(*(
            ProviderConfig(id=pid, type="xtream", streams_urls=(http_server,),
                           details={"max_connections": 10})
            for pid in ids
        ))
        sources = [
            {"provider_id": "race-slow1", "provider_url": "/slow?n=1"},
            {"provider_id": "race-fast", "provider_url": "/ok"},
            {"provider_id": "race-slow2", "provider_url": "/slow?n=2"},
        ]
        selector = make_selector(directory, sources, URLProber(timeout=5), fake_clock, race_width=3)

        started = time.monotonic()
        url = selector.get_best_source("603", "movies", username="alice")

        assert url == f"{http_server}/ok"
        assert time.monotonic() - started < 1.0
        # loser probes finish in the background once their sockets are shut down
        deadline = time.monotonic() + 1.5
        while time.monotonic() < deadline and not all(
                outcome_count(pid, "cancelled") for pid in ("race-slow1", "race-slow2")):
            time.sleep(0.01)
        assert outcome_count("race-slow1", "cancelled") == 1
        assert outcome_count("race-slow2", "cancelled") == 1
        assert outcome_count("race-slow1", "200") is None

    def test_fallback_after_race_fails(self, fake_clock):
        directory = StaticDirectory(xtream("p1", 10, 9), xtream("p2", 10, 1))
        prober = FakeProber({P2_URL: (502, 0.0)})
        selector = make_selector(directory, movie_sources("p1", "p2"), prober,
                                 fake_clock, race_width=1)

        assert selector.get_best_source("603", "movies", username="alice") == P1_URL
        assert [c[0] for c in prober.calls] == [P2_URL, P1_URL]
        assert selector.health.recent_errors("p2") == 1

    def test_timeouts_count_as_material_errors(self, fake_clock):
        directory = StaticDirectory(xtream("p1"))
        prober = FakeProber({P1_URL: (None, 0.0)})
        selector = make_selector(directory, movie_sources("p1"), prober, fake_clock)

        assert selector.get_best_source("603", "movies", username="alice") is None
        assert selector.health.recent_errors("p1") == 1

    def test_404_is_not_a_material_error(self, fake_clock):
        directory = StaticDirectory(xtream("p1"))
        prober = FakeProber({P1_URL: (404, 0.0)})
        selector = make_selector(directory, movie_sources("p1"), prober, fake_clock)

        assert selector.get_best_source("603", "movies", username="alice") is None
        assert selector.health.recent_errors("p1") == 0
        assert len(selector.cache) == 0


class TestEdgeCases:

    def test_username_required(self, fake_clock):
        selector = make_selector(StaticDirectory(), [], FakeProber(), fake_clock)
        with pytest.raises(ValueError):
            selector.get_best_source("603", "movies", username="")

    def test_no_sources(self, fake_clock):
        selector = make_selector(StaticDirectory(), [], FakeProber(), fake_clock)
        assert selector.get_best_source("603", "movies", username="alice") is None

    def test_source_lookup_failure_returns_none(self, fake_clock):
        def broken(*args):
            raise RuntimeError("database is locked")

        selector = SourceSelector(broken, StaticDirectory(), prober=FakeProber(), clock=fake_clock)
        assert selector.get_best_source("603", "movies", username="alice") is None

    def test_episode_lookup_passes_season_and_episode(self, fake_clock):
        seen = []

        def find(title_id, media_type, season, episode):
            seen.append((title_id, media_type, season, episode))
            return []

        selector = SourceSelector(find, StaticDirectory(), prober=FakeProber(), clock=fake_clock)
        selector.get_best_source("1399", "tvshows", 1, 2, username="alice")
        assert seen == [("1399", "tvshows", 1, 2)]

    def test_sweep_and_invalidate(self, fake_clock):
        directory = StaticDirectory(xtream("p1"))
        selector = make_selector(directory, movie_sources("p1"), FakeProber(), fake_clock)
        selector.get_best_source("603", "movies", username="alice")
        fake_clock.advance(400)

        assert selector.sweep() == {"health_events_removed": 1, "decisions_expired": 1}
        selector.invalidate_providers()
        assert directory.invalidations == 1
