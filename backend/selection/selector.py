"""Per-request selection of a working upstream stream URL.

Pipeline for get_best_source():

1. decision cache (per user, dropped if its provider has recent 502s)
2. candidates from the title's stored sources and live provider config
3. initial order, then load scores (lower wins):
   +10000 per recent 502; Xtream -100 per free connection and +500 above
   80% utilization; AGTV +50 per recent selection
4. round robin among candidates within 200 points of the best score
5. probe the top candidates in parallel, first valid wins, losers cancelled
6. probe the rest one by one
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError

import metrics
from cancellation import CancellationToken
from clock import Clock, get_clock
from providers import get_probe_method
from providers.http_session import redact_url
from selection.candidates import (
    ScoredCandidate,
    SourceCandidate,
    initial_order,
    materialize,
)
from selection.decision_cache import DecisionCache, make_cache_key
from selection.health import HealthTracker
from selection.prober import ProbeResult, URLProber

logger = logging.getLogger(__name__)

ERROR_PENALTY = 10000
FREE_CONNECTION_BONUS = 100
HIGH_UTILIZATION_THRESHOLD = 0.8
HIGH_UTILIZATION_PENALTY = 500
SELECTION_PENALTY = 50
ROUND_ROBIN_BAND = 200
DEFAULT_RACE_WIDTH = 5
MAX_ROTATION_KEYS = 10000


def _title_key(media_type: str, title_id: str, season=None, episode=None) -> str:
    key = f"{media_type}-{title_id}"
    if season is not None and episode is not None:
        key += f"-S{season}-E{episode}"
    return key


class SourceSelector:
    """Chooses one working URL for a title among all enabled providers.

    Args:
        find_sources: callable(title_id, media_type, season, episode) returning
            the stored source dicts ({provider_id, provider_url}).
        directory: ProviderDirectory (or anything with get(provider_id)).
        prober: URLProber-compatible object.
    """

    def __init__(self, find_sources, directory, prober: URLProber = None,
                 health: HealthTracker = None, cache: DecisionCache = None,
                 clock: Clock = None, race_width: int = DEFAULT_RACE_WIDTH,
                 probe_budget: float = None):
        self._find_sources = find_sources
        self.directory = directory
        self.prober = prober or URLProber()
        self._clock = clock or get_clock()
        self.health = health or HealthTracker(clock=self._clock)
        self.cache = cache or DecisionCache(clock=self._clock)
        self.race_width = max(1, race_width)
        self._probe_budget = probe_budget
        self._rotation_lock = threading.Lock()
        self._last_selected: OrderedDict[str, str] = OrderedDict()

        self.health.add_error_listener(self._on_provider_error)

    # ---- public API ----

    def get_best_source(self, title_id: str, media_type: str, season: int = None,
                        episode: int = None, *, username: str,
                        token: CancellationToken = None) -> str | None:
        """Return the URL of a working source, or None if none is available."""
        if not username:
            raise ValueError("username is required for source selection")
        token = token or CancellationToken()

        cache_key = make_cache_key(media_type, title_id, season, episode, username)
        decision = self.cache.get(cache_key)
        if decision is not None:
            if self.health.recent_errors(decision.provider_id) == 0:
                metrics.record_selection("cache_hit")
                logger.debug("Decision cache hit for %s -> %s", cache_key, decision.provider_id)
                return decision.url
            self.cache.invalidate(cache_key)

        title_key = _title_key(media_type, title_id, season, episode)
        try:
            sources = self._find_sources(title_id, media_type, season, episode)
            candidates = materialize(sources, self.directory)
        except Exception:
            logger.exception("Cannot load sources for %s", title_key)
            metrics.record_selection("none")
            return None

        if not candidates:
            logger.info("No sources available for %s", title_key)
            metrics.record_selection("none")
            return None

        ranked = self._rotate(title_key, self._score(initial_order(candidates)))
        raced, rest = ranked[:self.race_width], ranked[self.race_width:]

        winner = self._race(title_key, raced, token)
        result_kind = "race"
        if winner is None and rest:
            winner = self._fallback(title_key, rest, token)
            result_kind = "fallback"

        if winner is None:
            logger.warning("No working source for %s after %d candidate(s)", title_key, len(ranked))
            metrics.record_selection("none")
            return None

        self.cache.put(cache_key, winner.provider_id, winner.url)
        self.health.record_selection(winner.provider_id)
        metrics.record_selection(result_kind)
        return winner.url

    def invalidate_providers(self) -> None:
        self.directory.invalidate()

    def sweep(self) -> dict:
        """Garbage-collect stale health events and expired cache entries."""
        events = self.health.sweep()
        decisions = self.cache.purge_expired()
        return {"health_events_removed": events, "decisions_expired": decisions}

    # ---- scoring ----

    def _score(self, candidates: list[SourceCandidate]) -> list[ScoredCandidate]:
        scored = []
        for c in candidates:
            score = ERROR_PENALTY * self.health.recent_errors(c.provider_id)
            if c.provider_type == "xtream":
                provider = c.provider
                free = max(0, provider.max_connections - provider.active_connections)
                score -= FREE_CONNECTION_BONUS * free
                if provider.utilization > HIGH_UTILIZATION_THRESHOLD:
                    score += HIGH_UTILIZATION_PENALTY
            elif c.provider_type == "agtv":
                score += SELECTION_PENALTY * self.health.recent_selections(c.provider_id)
            scored.append(ScoredCandidate(c, score))
        return sorted(scored, key=lambda s: (s.score, s.candidate.priority, s.provider_id))

    def _rotate(self, title_key: str, scored: list[ScoredCandidate]) -> list[ScoredCandidate]:
        """Round robin between providers scoring less than ROUND_ROBIN_BAND above the best."""
        if len(scored) < 2:
            return scored
        best = scored[0].score
        band = [s for s in scored if s.score - best < ROUND_ROBIN_BAND]
        providers = list(dict.fromkeys(s.provider_id for s in band))
        if len(providers) < 2:
            return scored

        with self._rotation_lock:
            last = self._last_selected.get(title_key)
            index = (providers.index(last) + 1) % len(providers) if last in providers else 0
            chosen_provider = providers[index]
            self._last_selected[title_key] = chosen_provider
            self._last_selected.move_to_end(title_key)
            while len(self._last_selected) > MAX_ROTATION_KEYS:
                self._last_selected.popitem(last=False)

        chosen = next(s for s in band if s.provider_id == chosen_provider)
        return [chosen] + [s for s in scored if s is not chosen]

    # ---- probing ----

    def _probe(self, candidate: SourceCandidate, token: CancellationToken) -> ProbeResult:
        try:
            return self.prober.probe(
                candidate.url,
                method=get_probe_method(candidate.provider_type),
                provider_id=candidate.provider_id,
                token=token,
            )
        except Exception as e:
            logger.exception("Prober raised for %s", redact_url(candidate.url))
            return ProbeResult(url=candidate.url, is_valid=False, error=f"prober_error: {e}")

    def _record(self, candidate: SourceCandidate, result: ProbeResult) -> None:
        if result.is_material_failure:
            self.health.record_error(candidate.provider_id, 502)

    def _race(self, title_key: str, scored: list[ScoredCandidate],
              token: CancellationToken) -> SourceCandidate | None:
        if not scored:
            return None
        tokens = [CancellationToken(parent=token) for _ in scored]
        executor = ThreadPoolExecutor(max_workers=len(scored), thread_name_prefix="probe")
        futures = {
            executor.submit(self._probe, s.candidate, t): (s, t)
            for s, t in zip(scored, tokens)
        }
        outcomes: dict[str, ProbeResult] = {}
        winner = None
        budget = self._probe_budget if self._probe_budget is not None else self.prober.timeout + 1.0
        try:
            for future in as_completed(futures, timeout=budget):
                entry, _ = futures[future]
                result = future.result()
                outcomes[entry.candidate.url] = result
                self._record(entry.candidate, result)
                if result.is_valid:
                    winner = entry.candidate
                    break
        except FutureTimeoutError:
            logger.warning("Probe race for %s exceeded %.1fs", title_key, budget)
        finally:
            for t in tokens:
                t.cancel("race decided")
            executor.shutdown(wait=False, cancel_futures=True)

        self._log_race(title_key, scored, outcomes, winner)
        return winner

    def _fallback(self, title_key: str, scored: list[ScoredCandidate],
                  token: CancellationToken) -> SourceCandidate | None:
        for entry in scored:
            if token.cancelled:
                return None
            result = self._probe(entry.candidate, CancellationToken(parent=token))
            self._record(entry.candidate, result)
            logger.info("Fallback probe for %s: provider=%s status=%s valid=%s",
                        title_key, entry.provider_id, result.outcome, result.is_valid)
            if result.is_valid:
                return entry.candidate
        return None

    def _log_race(self, title_key, scored, outcomes, winner) -> None:
        probes = []
        for s in scored:
            result = outcomes.get(s.candidate.url)
            probes.append({
                "provider": s.provider_id,
                "type": s.candidate.provider_type,
                "score": s.score,
                "status": result.outcome if result else "cancelled",
                "valid": bool(result and result.is_valid),
                "response_ms": round(result.response_time * 1000) if result else None,
            })
        summary = {
            "title": title_key,
            "winner": winner.provider_id if winner else None,
            "probes": probes,
        }
        logger.info(
            "Source race for %s: winner=%s [%s]",
            title_key,
            summary["winner"],
            ", ".join(f"{p['provider']}:{p['status']}" for p in probes),
            extra={"race": summary},
        )

    def _on_provider_error(self, provider_id: str, status_code: int) -> None:
        self.cache.invalidate_provider(provider_id)

