# doh_proxy/selector.py
"""Weighted random selection of the primary upstream provider"""

import logging
import random
from typing import Optional, Sequence

from .providers import Provider

logger = logging.getLogger(__name__)


class WeightedSelector:
    """
    Pick a provider with probability weight / total_weight.

    Every call draws independently: no round-robin memory and no health
    feedback, so a failing provider is as likely to be chosen next time.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def select(self, providers: Sequence[Provider]) -> Provider:
        if not providers:
            raise ValueError("cannot select from an empty provider list")

        total_weight = sum(p.weight for p in providers)
        draw = self._rng.random() * total_weight
        return self.select_with_draw(providers, draw)

    def select_with_draw(self, providers: Sequence[Provider], draw: float) -> Provider:
        """Walk the providers with a fixed draw in [0, total_weight)"""
        remainder = draw
        for provider in providers:
            if remainder < provider.weight:
                return provider
            remainder -= provider.weight

        # Unreachable for a draw inside [0, total_weight)
        logger.warning(
            f"Weighted selection fell through with draw {draw!r}; using {providers[0].name}"
        )
        return providers[0]
