import pytest

from showreco.similarity import calculate_similarity, find_similar_users


def test_fewer_than_three_shared_shows_gives_default():
    assert calculate_similarity({}, {}) == 0.3
    assert calculate_similarity({"a": 8, "b": 2}, {"a": 8, "b": 2}) == 0.3
    assert calculate_similarity({"a": 8, "b": 2, "c": 5}, {"a": 1, "b": 9, "x": 5}) == 0.3


def test_identical_ratings_give_full_similarity():
    mine = {"a": 7, "b": 3, "c": 9, "d": 4}
    theirs = {"a": 7, "b": 3, "c": 9, "z": 1}
    assert calculate_similarity(mine, theirs) == 1.0


def test_maximal_disagreement_gives_zero():
    mine = {"a": 10, "b": 0, "c": 10}
    theirs = {"a": 0, "b": 10, "c": 0}
    assert calculate_similarity(mine, theirs) == 0.0


def test_mean_absolute_difference():
    mine = {"a": 8, "b": 6, "c": 4}
    theirs = {"a": 7, "b": 6, "c": 6}
    # diffs 1, 0, 2 -> mean 1 -> 0.9
    assert calculate_similarity(mine, theirs) == pytest.approx(0.9)


def test_min_shared_is_tunable():
    assert calculate_similarity({"a": 5}, {"a": 5}, min_shared=1) == 1.0


def test_find_similar_users_sorted_and_named(make_rating):
    ratings = [
        make_rating("me", "a", 8), make_rating("me", "b", 6), make_rating("me", "c", 4),
        make_rating("close", "a", 8), make_rating("close", "b", 6), make_rating("close", "c", 5),
        make_rating("far", "a", 1), make_rating("far", "b", 1), make_rating("far", "c", 1),
        make_rating("stranger", "z", 5),
    ]
    matches = find_similar_users("me", ratings, {"close": "cleo", "far": "fred"})

    assert [m.user_id for m in matches] == ["close", "far", "stranger"]
    assert matches[0].username == "cleo"
    assert matches[0].similarity == pytest.approx(1 - 1 / 30)
    assert matches[2].username == "Unknown"
    assert matches[2].similarity == 0.3


def test_find_similar_users_needs_a_baseline(make_rating):
    ratings = [make_rating("me", "a", 8), make_rating("other", "a", 8)]
    assert find_similar_users("me", ratings, {}) == []
