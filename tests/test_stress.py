import pytest
from curtail.control.stress import classify
from curtail.models import GridStressLevel


@pytest.mark.parametrize(
    "score, margin, expected",
    [
        (30, 20, GridStressLevel.NORMAL),
        (40, 15, GridStressLevel.NORMAL),
        (41, 20, GridStressLevel.ELEVATED),
        (30, 14.9, GridStressLevel.ELEVATED),
        (61, 20, GridStressLevel.HIGH),
        (30, 9, GridStressLevel.HIGH),
        (81, 20, GridStressLevel.CRITICAL),
        (30, 4, GridStressLevel.CRITICAL),
        (90, 4, GridStressLevel.CRITICAL),
    ],
)
def test_classify_bands(score, margin, expected):
    assert classify(score, margin) == expected


def test_either_signal_escalates():
    """A healthy score does not mask a thin reserve margin."""
    assert classify(0, 4.5) == GridStressLevel.CRITICAL
    assert classify(95, 50) == GridStressLevel.CRITICAL


def test_stress_levels_are_ordered():
    assert GridStressLevel.NORMAL < GridStressLevel.ELEVATED < GridStressLevel.HIGH
    assert GridStressLevel.CRITICAL > GridStressLevel.HIGH
    assert max(GridStressLevel) == GridStressLevel.CRITICAL
