"""Grid stress classification from stress score and reserve margin."""

from ..models import GridStressLevel

# (stress score above, reserve margin below) -> level, most severe first
STRESS_THRESHOLDS = [
    (80, 5, GridStressLevel.CRITICAL),
    (60, 10, GridStressLevel.HIGH),
    (40, 15, GridStressLevel.ELEVATED),
]


def classify(stress_score: float, reserve_margin: float) -> GridStressLevel:
    """Map a 0-100 stress score and reserve margin (%) to a stress level.

    The first matching band wins, so either signal alone can escalate the level.
    """
    for score_above, margin_below, level in STRESS_THRESHOLDS:
        if stress_score > score_above or reserve_margin < margin_below:
            return level
    return GridStressLevel.NORMAL
