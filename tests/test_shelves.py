import logging

import pytest

from showreco import shelves


def test_popular_this_week_prefers_community(make_store, make_catalog, make_rating, make_show, now):
    store = make_store(
        ratings=[make_rating(f"u{i}", "A", 8, days_ago=1, recommend=True) for i in range(3)]
        + [make_rating("x", "A", 8, days_ago=60, recommend=False)]
        + [make_rating("v", "B", 8, days_ago=3, recommend=True)],
        shows=[make_show("A"), make_show("B")],
    )
    catalog = make_catalog(week=[make_show("A"), make_show("W1", first_air_date=None, kind="movie")])

    items = shelves.fetch_popular_this_week(store, catalog, reference_time=now)

    assert [i.show_id for i in items] == ["A", "B", "W1"]
    assert items[0].recommend_percent == 75
    assert items[0].label == "75% recommend"
    assert items[2].label == "Trending"
    assert items[2].recommend_percent is None
    assert items[2].media_type == "movie"
    assert [s.id for s in store.upserted] == ["W1"]


def test_popular_this_week_falls_back_to_catalog(make_store, make_catalog, make_show, now):
    catalog = make_catalog(week=[make_show(f"W{i}") for i in range(5)])
    items = shelves.fetch_popular_this_week(make_store(), catalog, reference_time=now)
    assert [i.show_id for i in items] == ["W0", "W1", "W2"]
    assert all(i.media_type == "tv" for i in items)


def test_friends_trending_latest_first_then_community(make_store, make_catalog, make_rating, make_show, now):
    store = make_store(
        ratings=[
            make_rating("pal", "F1", 6, days_ago=5),
            make_rating("pal", "F2", 9, days_ago=1),
            make_rating("pal", "OLD", 9, days_ago=20),
            make_rating("z", "C1", 8, days_ago=2, recommend=True),
        ],
        shows=[make_show(s) for s in ["F1", "F2", "OLD", "C1"]],
        follows={"me": ["pal"]},
    )

    items = shelves.fetch_friends_trending(store, make_catalog(), "me", reference_time=now)

    assert [i.show_id for i in items] == ["F2", "F1", "C1"]
    assert items[0].label == "Trending"
    assert items[2].label == "100% recommend"


def test_friends_trending_without_user_uses_community(make_store, make_catalog, make_rating, make_show, now):
    store = make_store(
        ratings=[make_rating("z", "C1", 8, days_ago=2, recommend=True)],
        shows=[make_show("C1")],
    )
    catalog = make_catalog(week=[make_show("W1")])
    items = shelves.fetch_friends_trending(store, catalog, None, reference_time=now)
    assert [i.show_id for i in items] == ["C1", "W1"]


def test_critically_loved(make_store, make_catalog, make_rating, make_show):
    store = make_store(
        ratings=[
            make_rating("a", "L", 9, recommend=True),
            make_rating("b", "L", 8, recommend=True),
            make_rating("c", "M", 10, recommend=True),
            make_rating("d", "N", 7, recommend=True),
            make_rating("e", "O", 9, recommend=False),
        ],
        shows=[make_show(s) for s in "LMNO"],
    )
    catalog = make_catalog(top=[make_show("T1"), make_show("T2")])

    items = shelves.fetch_critically_loved(store, catalog)

    assert [i.show_id for i in items] == ["L", "M", "T1"]
    assert items[2].label == "Top rated"


@pytest.mark.asyncio
async def test_inspiration_shelves_isolate_failures(make_store, make_catalog, make_show, monkeypatch, caplog):
    def broken(store, catalog, user_id=None):
        raise RuntimeError("shelf exploded")

    monkeypatch.setitem(shelves.SHELF_FETCHERS, "friends_trending", broken)
    catalog = make_catalog(week=[make_show("W1")], top=[make_show("T1")])

    with caplog.at_level(logging.ERROR):
        result = await shelves.fetch_inspiration_shelves(make_store(), catalog, "me")

    assert result["friends_trending"] == []
    assert [i.show_id for i in result["popular_this_week"]] == ["W1"]
    assert [i.show_id for i in result["critically_loved"]] == ["T1"]
    assert "Shelf 'friends_trending' failed: shelf exploded" in caplog.text


@pytest.mark.asyncio
async def test_inspiration_shelves_survive_catalog_outage(make_store, make_catalog):
    result = await shelves.fetch_inspiration_shelves(make_store(), make_catalog(failing=True), "me")
    assert result == {"popular_this_week": [], "friends_trending": [], "critically_loved": []}
