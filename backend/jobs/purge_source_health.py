"""purgeSourceHealth: garbage-collect selector health events and cached decisions."""

import logging

logger = logging.getLogger(__name__)


class PurgeSourceHealthJob:
    """Runs SourceSelector.sweep(); needs no database access."""

    name = "purgeSourceHealth"

    def __init__(self, selector):
        self._selector = selector

    def __call__(self, ctx):
        ctx.check_cancelled()
        result = self._selector.sweep()
        logger.debug("Source health sweep: %s", result)
        return result
