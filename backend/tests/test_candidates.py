"""Tests for selection/candidates.py: URL materialization and initial order."""

from providers.base import ProviderConfig
from selection.candidates import initial_order, materialize


class StaticDirectory:
    def __init__(self, *providers):
        self._providers = {p.id: p for p in providers}

    def get(self, provider_id):
        return self._providers.get(provider_id)

    def invalidate(self):
        pass


def xtream(provider_id, max_conn=10, active=0, priority=None, streams=("http://s1", "http://s2/")):
    return ProviderConfig(
        id=provider_id, type="xtream", priority=priority, streams_urls=tuple(streams),
        details={"max_connections": max_conn, "active_connections": active},
    )


def agtv(provider_id, priority=None, **kwargs):
    return ProviderConfig(id=provider_id, type="agtv", priority=priority, **kwargs)


def test_relative_paths_join_every_stream_base():
    directory = StaticDirectory(xtream("x1"))
    candidates = materialize([{"provider_id": "x1", "provider_url": "/movie/u/p/1.mkv"}], directory)
    assert [c.url for c in candidates] == [
        "http://s1/movie/u/p/1.mkv",
        "http://s2/movie/u/p/1.mkv",
    ]


def test_absolute_urls_used_as_is():
    directory = StaticDirectory(agtv("a1"))
    candidates = materialize([{"provider_id": "a1", "provider_url": "https://cdn/a.m3u8"}], directory)
    assert [c.url for c in candidates] == ["https://cdn/a.m3u8"]


def test_unusable_and_unknown_providers_are_dropped():
    directory = StaticDirectory(
        agtv("disabled", enabled=False),
        agtv("deleted", deleted=True),
        agtv("ok"),
    )
    sources = [
        {"provider_id": "disabled", "provider_url": "http://a"},
        {"provider_id": "deleted", "provider_url": "http://b"},
        {"provider_id": "ghost", "provider_url": "http://c"},
        {"provider_id": "ok", "provider_url": ""},
        {"provider_id": "ok", "provider_url": "http://d"},
    ]
    assert [c.provider_id for c in materialize(sources, directory)] == ["ok"]


def test_duplicates_collapse():
    directory = StaticDirectory(agtv("a1"))
    sources = [{"provider_id": "a1", "provider_url": "http://x"}] * 3
    assert len(materialize(sources, directory)) == 1


def test_initial_order_type_then_availability_then_priority():
    directory = StaticDirectory(
        agtv("agtv-high", priority=1),
        xtream("busy", max_conn=10, active=9),
        xtream("free-low-prio", max_conn=10, active=1, priority=5),
        xtream("free-high-prio", max_conn=10, active=1, priority=1),
    )
    sources = [
        {"provider_id": pid, "provider_url": "http://u/" + pid}
        for pid in ("agtv-high", "busy", "free-low-prio", "free-high-prio")
    ]
    ordered = initial_order(materialize(sources, directory))
    assert [c.provider_id for c in ordered] == [
        "free-high-prio", "free-low-prio", "busy", "agtv-high",
    ]
