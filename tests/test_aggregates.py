from showreco.aggregates import (
    compute_recommend_percent,
    compute_recommend_stats,
    fetch_recommend_stats,
    rank_by_count,
    recommend_label,
)


def test_empty_ratings_have_no_percent():
    stats = compute_recommend_stats([])
    assert stats.as_dict() == {"total": 0, "positive": 0, "percent": None}


def test_two_of_three_rounds_to_67():
    stats = compute_recommend_stats([{"recommend": True}, {"recommend": True}, {"recommend": False}])
    assert stats.as_dict() == {"total": 3, "positive": 2, "percent": 67}


def test_absent_flags_are_ignored(make_rating):
    base = [{"recommend": True}, {"recommend": False}]
    noisy = base + [{"recommend": None}, {}, make_rating("u", "s", 5)]
    assert compute_recommend_stats(noisy) == compute_recommend_stats(base)
    assert compute_recommend_percent(noisy) == 50


def test_zero_percent_is_not_no_data():
    assert compute_recommend_percent([{"recommend": False}]) == 0
    assert compute_recommend_percent([{"recommend": None}]) is None


def test_integer_flags_from_raw_rows_count():
    stats = compute_recommend_stats([{"recommend": 1}, {"recommend": 0}, {"recommend": 1}, {"recommend": None}])
    assert stats.as_dict() == {"total": 3, "positive": 2, "percent": 67}


def test_half_rounds_up():
    flags = [{"recommend": True}] + [{"recommend": False}] * 7
    assert compute_recommend_percent(flags) == 13  # 12.5


def test_recommend_label():
    assert recommend_label(82, "Trending") == "82% recommend"
    assert recommend_label(0, "Trending") == "0% recommend"
    assert recommend_label(None, "Trending") == "Trending"


def test_rank_by_count_orders_by_count_then_id(make_rating):
    ratings = (
        [make_rating(f"u{i}", "B", 7) for i in range(2)]
        + [make_rating(f"u{i}", "A", 7) for i in range(5)]
        + [make_rating(f"u{i}", "C", 7) for i in range(2)]
    )
    assert rank_by_count(ratings) == [("A", 5), ("B", 2), ("C", 2)]
    assert rank_by_count(ratings, exclude={"A"}) == [("B", 2), ("C", 2)]


def test_fetch_recommend_stats_scopes_to_users(make_store, make_rating):
    store = make_store(ratings=[
        make_rating("f1", "s", 8, recommend=True),
        make_rating("f2", "s", 8, recommend=False),
        make_rating("x", "s", 8, recommend=True),
        make_rating("y", "s", 8, recommend=True),
    ])
    assert fetch_recommend_stats(store, "s").percent == 75
    assert fetch_recommend_stats(store, "s", ["f1", "f2"]).percent == 50
    assert fetch_recommend_stats(store, "s", []).percent is None
