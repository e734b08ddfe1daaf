import logging

from showreco.fallback import Tier, compose_tiers, lookup_shows, write_through
from showreco.models import ShelfItem


def _items(*ids):
    return [ShelfItem(show_id=i, title=i, poster_path=None, recommend_percent=None, label="x") for i in ids]


def test_never_exceeds_target_and_never_duplicates():
    tiers = [
        Tier("one", lambda remaining, seen: _items("a", "b")),
        Tier("two", lambda remaining, seen: _items("b", "c", "a", "d", "e")),
    ]
    result = compose_tiers(tiers, 3)
    assert [i.show_id for i in result] == ["a", "b", "c"]


def test_later_tiers_only_run_while_slots_remain():
    calls = []

    def tier(name, ids):
        def fetch(remaining, seen):
            calls.append((name, remaining, seen))
            return _items(*ids)
        return Tier(name, fetch)

    result = compose_tiers([tier("one", ["a", "b", "c"]), tier("two", ["d"])], 3)

    assert len(result) == 3
    assert calls == [("one", 3, frozenset())]


def test_tiers_see_remaining_slots_and_taken_ids():
    seen_by_second = {}

    def second(remaining, seen):
        seen_by_second.update(remaining=remaining, seen=seen)
        return _items("z")

    compose_tiers([Tier("one", lambda r, s: _items("a")), Tier("two", second)], 10)
    assert seen_by_second == {"remaining": 9, "seen": frozenset({"a"})}


def test_failing_tier_is_logged_and_skipped(caplog):
    def broken(remaining, seen):
        raise RuntimeError("backend down")

    with caplog.at_level(logging.ERROR):
        result = compose_tiers([Tier("community", broken), Tier("catalog", lambda r, s: _items("a"))], 3)

    assert [i.show_id for i in result] == ["a"]
    assert "Tier 'community' failed: backend down" in caplog.text


def test_all_tiers_failing_gives_empty():
    def broken(remaining, seen):
        raise ValueError("nope")

    assert compose_tiers([Tier("a", broken), Tier("b", broken)], 3) == []


def test_write_through_keeps_going_after_a_failed_upsert(make_store, make_show, caplog):
    store = make_store(failing={"upsert_show"})
    with caplog.at_level(logging.WARNING):
        write_through(store, [make_show("1"), make_show("2")])
    assert caplog.text.count("Failed to cache show") == 2


def test_lookup_shows_preserves_order_and_skips_unknown(make_store, make_show):
    store = make_store(shows=[make_show("a"), make_show("b")])
    assert [s.id for s in lookup_shows(store, ["b", "missing", "a"])] == ["b", "a"]
    assert lookup_shows(store, []) == []
