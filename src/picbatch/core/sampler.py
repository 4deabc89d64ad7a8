"""Weighted-random picture batches biased toward recent additions.

A uniform sample over every picture in a category would rarely show pictures
added in the last few days.  The sampler therefore splits each batch in two:

- a **fresh set** drawn from the ``recent_window`` most recently added
  matching pictures; its size is a random integer between 1 and half the
  batch size
- a **backfill set** drawn from the remaining (older) matching pictures

Both draws are delegated to
:meth:`~picbatch.core.record_store.Collection.sample_matching`, so the
random subset primitive belongs to the store.

When the older population cannot fill the batch (small categories), the
batch is topped up with recent pictures that were not already drawn.  A
category with fewer pictures than the requested count therefore comes back
whole.

No identity appears twice in a batch.  Batches are unordered.
"""

from __future__ import annotations

import logging
import random
from typing import Any

from picbatch.core.models import Picture
from picbatch.core.record_store import Collection

logger = logging.getLogger(__name__)

DEFAULT_RECENT_WINDOW = 50


def _unique(pictures: list[Picture]) -> list[Picture]:
    seen: set[str] = set()
    unique = []
    for picture in pictures:
        if picture.id not in seen:
            seen.add(picture.id)
            unique.append(picture)
    return unique


class Sampler:
    """Assemble random picture batches from a picture collection.

    Args:
        pictures: The picture collection to sample from.
        recent_window: Number of newest matching pictures treated as fresh.
        rng: Random source for the fresh-set size.
    """

    def __init__(
        self,
        pictures: Collection[Picture],
        recent_window: int = DEFAULT_RECENT_WINDOW,
        rng: random.Random | None = None,
    ):
        if recent_window < 1:
            raise ValueError("recent_window must be at least 1")
        self.pictures = pictures
        self.recent_window = recent_window
        self.rng = rng or random.Random()

    def fresh_count(self, count: int) -> int:
        """Draw the target fresh-set size for a batch of ``count``.

        Uniform over ``[1, count // 2]``, never below 1.
        """
        return self.rng.randint(1, max(1, count // 2))

    def sample(self, filter: dict[str, Any], count: int) -> list[Picture]:
        """Return at most ``count`` distinct pictures matching ``filter``.

        Args:
            filter: Equality filter passed to the store, e.g.
                ``{"category_id": "..."}``.
            count: Requested batch size.  Zero or negative yields ``[]``.

        Returns:
            Fresh pictures followed by backfill pictures.  Fewer than
            ``count`` only when fewer pictures match.
        """
        if count <= 0:
            return []

        window = self.recent_window
        fresh = self.pictures.sample_matching(
            filter,
            skip=0,
            limit=window,
            sample_size=min(self.fresh_count(count), window),
        )
        # The store may hand back duplicates under concurrent writes.
        fresh = _unique(fresh)

        rest_count = count - len(fresh)
        logger.debug(f"Sampling {filter}: fresh={len(fresh)} rest={rest_count}")
        if rest_count <= 0:
            return fresh

        taken = {picture.id for picture in fresh}
        backfill = self.pictures.sample_matching(
            filter,
            skip=window,
            sample_size=rest_count,
            exclude_ids=taken,
        )
        batch = _unique(fresh + backfill)

        shortfall = count - len(batch)
        if shortfall > 0:
            taken = {picture.id for picture in batch}
            top_up = self.pictures.sample_matching(
                filter,
                skip=0,
                limit=window,
                sample_size=shortfall,
                exclude_ids=taken,
            )
            batch = _unique(batch + top_up)

        return batch[:count]
