from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from facewatch import config
from facewatch.face.registry import IdentityRegistry
from facewatch.utils.log import get_logger

logger = get_logger(__name__)

SimilarityFn = Callable[[np.ndarray, np.ndarray], float]


@dataclass(frozen=True)
class MatchResult:
    name: str
    score: float

    def __str__(self) -> str:
        return f"{self.name} ({self.score:.4f})"


@dataclass
class MatchResults:
    # One entry per stored embedding, in registry order.
    results: List[MatchResult] = field(default_factory=list)
    best: MatchResult = field(default_factory=lambda: MatchResult(config.UNKNOWN_LABEL, 0.0))


@dataclass
class MatcherConfig:
    # Scores must be strictly above this to count as a match.
    threshold: float = config.DEFAULT_THRESHOLD
    unknown_label: str = config.UNKNOWN_LABEL


class Matcher:
    """Exhaustive matcher: scores a query against every stored embedding.

    Scores come from the extractor's similarity function, so their range
    depends on the backend. Every embedding is scored separately (no per-person
    aggregation). The best result starts as (unknown, 0.0) and is replaced only
    by a score strictly greater than both the current best and the threshold,
    so on ties the first one in registry order wins.
    """

    def __init__(self, similarity: SimilarityFn, cfg: Optional[MatcherConfig] = None):
        self.similarity = similarity
        self.config = cfg or MatcherConfig()

    def find_best_match(
        self,
        embedding: np.ndarray,
        registry: IdentityRegistry,
        threshold: Optional[float] = None,
    ) -> MatchResults:
        thr = float(self.config.threshold if threshold is None else threshold)
        best = MatchResult(self.config.unknown_label, 0.0)
        results: List[MatchResult] = []

        for name, stored in registry.pairs():
            score = float(self.similarity(embedding, stored))
            results.append(MatchResult(name, score))
            logger.debug(f"Person {name}, score: {score:f}")
            if score > best.score and score > thr:
                best = MatchResult(name, score)

        return MatchResults(results=results, best=best)
