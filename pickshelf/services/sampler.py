"""Weighted diversity sampling over an oversampled candidate pool."""

from __future__ import annotations

import logging
import random
from typing import Sequence

from ..models import Candidate, SelectedCandidate

logger = logging.getLogger(__name__)

MIN_WEIGHT = 0.1


def candidate_weight(score: float) -> float:
    """Selection weight for a score; floored so weak items keep a chance."""

    return max(MIN_WEIGHT, score) ** 2


class DiversitySampler:
    """Pick a varied but quality-ordered subset of a scored pool.

    Selection is weighted sampling without replacement, so the chosen set
    changes between runs; the result is then re-sorted by score so the order
    handed downstream is always monotonic.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def sample(
        self, pool: Sequence[Candidate], target_size: int
    ) -> list[SelectedCandidate]:
        if target_size <= 0 or not pool:
            return []
        if len(pool) <= target_size:
            return self._rank(list(pool))

        remaining = list(pool)
        chosen: list[Candidate] = []
        while remaining and len(chosen) < target_size:
            weights = [candidate_weight(candidate.score) for candidate in remaining]
            total_weight = sum(weights)
            draw = self._rng.random() * total_weight
            cumulative = 0.0
            picked = len(remaining) - 1
            for index, weight in enumerate(weights):
                cumulative += weight
                if draw < cumulative:
                    picked = index
                    break
            chosen.append(remaining.pop(picked))

        logger.debug(
            "Sampled %d of %d candidates", len(chosen), len(pool)
        )
        return self._rank(chosen)

    @staticmethod
    def _rank(candidates: list[Candidate]) -> list[SelectedCandidate]:
        # sorted() is stable, so equal scores keep their input order.
        ordered = sorted(candidates, key=lambda candidate: candidate.score, reverse=True)
        return [
            SelectedCandidate(
                item_id=candidate.item_id,
                external_item_id=candidate.external_item_id,
                title=candidate.title,
                year=candidate.year,
                score=candidate.score,
                rank=index + 1,
            )
            for index, candidate in enumerate(ordered)
        ]
