"""Split a reputation delta into the report outcomes that most likely produced it."""

from dataclasses import dataclass, field
from typing import Dict, Tuple

# Reputation awarded per outcome, checked largest first.
BUCKETS: Tuple[Tuple[str, int], ...] = (
    ("High", 50),
    ("Medium", 25),
    ("Low", 15),
    ("Triage", 7),
    ("N/A", -2),
    ("Spam", -10),
)


@dataclass
class ReputationBreakdown:
    counts: Dict[str, int] = field(default_factory=dict)

    def __str__(self) -> str:
        parts = []
        for label, _ in BUCKETS:
            count = self.counts.get(label, 0)
            if count > 0:
                parts.append(label if count < 2 else f"{label}({count})")
        return ", ".join(parts)


def calculate_rep_breakdown(rep_points: int) -> ReputationBreakdown:
    """Greedy decomposition: each bucket takes as many whole units as fit."""
    breakdown = ReputationBreakdown()
    for label, threshold in BUCKETS:
        fits = rep_points >= threshold if threshold > 0 else rep_points <= threshold
        if fits:
            count = rep_points // threshold
            breakdown.counts[label] = count
            rep_points -= count * threshold
    return breakdown
