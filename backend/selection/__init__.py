"""Stream source selection: health tracking, decision cache, probing, ranking.

Usage:
    selector = SourceSelector(find_sources, directory, URLProber())
    url = selector.get_best_source("603", "movies", username="alice")
"""

from selection.decision_cache import Decision, DecisionCache, make_cache_key
from selection.health import HealthTracker
from selection.prober import ProbeResult, URLProber
from selection.selector import SourceSelector

__all__ = [
    "Decision",
    "DecisionCache",
    "HealthTracker",
    "ProbeResult",
    "SourceSelector",
    "URLProber",
    "make_cache_key",
]
