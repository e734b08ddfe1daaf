from datetime import datetime, timedelta, timezone

import pytest

from showreco.models import DeckMode
from showreco.recency import age_in_days, get_recency_multiplier, multiplier_for_age


@pytest.mark.parametrize(
    "days, tonight, weekend",
    [
        (0, 1.3, 1.1),
        (29, 1.3, 1.1),
        (30, 1.0, 1.0),
        (180, 1.0, 1.0),
        (181, 0.8, 0.8),
        (1000, 0.8, 0.8),
    ],
)
def test_multiplier_table_boundaries(days, tonight, weekend):
    assert multiplier_for_age(days, DeckMode.TONIGHT) == tonight
    assert multiplier_for_age(days, DeckMode.THIS_WEEKEND) == weekend


def test_mode_aliases():
    assert multiplier_for_age(5, "immediate") == 1.3
    assert multiplier_for_age(5, "planned") == 1.1


def test_age_is_floored(now):
    assert age_in_days(now - timedelta(days=29, hours=23), now) == 29
    assert age_in_days(now - timedelta(days=30), now) == 30


def test_future_timestamp_counts_as_today(now):
    assert age_in_days(now + timedelta(days=3), now) == 0
    assert get_recency_multiplier(now + timedelta(days=3), DeckMode.TONIGHT, now) == 1.3


def test_accepts_iso_strings_and_aware_datetimes():
    ref = datetime(2026, 10, 1, 12, 0, 0)
    assert age_in_days("2026-09-01T12:00:00Z", ref) == 30
    aware = datetime(2026, 9, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert age_in_days(aware, ref) == 30
