"""Quality score aggregate policy."""

from dataclasses import dataclass, field

MIN_SCORE = 0.0
MAX_SCORE = 100.0
EMPTY_SCORE = 100.0


def clamp_score(value: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, float(value)))


@dataclass
class QualityAggregate:
    """
    Line-weighted average of per-file quality contributions.

    Each contribution is clamped to [0, 100] and weighted by the file's line
    count (at least 1). With no successfully analyzed files the score is 100.
    """

    weighted_sum: float = 0.0
    total_weight: int = 0
    contributions: int = field(default=0)

    def add(self, score: float, lines: int) -> None:
        weight = max(1, int(lines))
        self.weighted_sum += clamp_score(score) * weight
        self.total_weight += weight
        self.contributions += 1

    @property
    def score(self) -> float:
        if self.total_weight == 0:
            return EMPTY_SCORE
        return round(clamp_score(self.weighted_sum / self.total_weight), 2)
