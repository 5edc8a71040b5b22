"""Replay shaping: scale a tick's batch by the load multiplier, then cap it."""

import logging
import math
from itertools import cycle, islice

logger = logging.getLogger(__name__)


def resample(eligible: list, load: float) -> list:
    """Return ``floor(len(eligible) * load)`` items taken cyclically from the front.

    The batch is walked from index 0 and wrapped at the end, so ``load < 1``
    keeps the head of the batch and ``load > 1`` repeats it. This is not
    random sampling.
    """
    if load == 1 or not eligible:
        return list(eligible)
    target = math.floor(len(eligible) * load)
    if target <= 0:
        return []
    return list(islice(cycle(eligible), target))


def cap(batch: list, max_rate: int | None) -> list:
    """Truncate ``batch`` to at most ``max_rate`` items; 0 or None means no cap."""
    if max_rate and len(batch) > max_rate:
        return batch[:max_rate]
    return batch


class ReplayShaper:
    def __init__(self, load: float = 1.0, max_rate: int | None = 200):
        self.load = load
        self.max_rate = max_rate

    @classmethod
    def from_config(cls, config) -> "ReplayShaper":
        return cls(load=config.load, max_rate=config.maxrate)

    def shape(self, eligible: list) -> list:
        resampled = resample(eligible, self.load)
        batch = cap(resampled, self.max_rate)
        dropped = len(resampled) - len(batch)
        if dropped:
            logger.debug("Rate cap %d dropped %d request(s) this tick", self.max_rate, dropped)
        return batch
