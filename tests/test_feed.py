"""Tests for the deduplicating tabular feed."""

from cm_sheet_sync.feed import FeedRow, TabularFeed
from cm_sheet_sync.tabular import InMemoryTabularStore


def ad_rows():
    return [
        {"Ad ID": "1", "Ad Name": "Ad one", "Placement ID": "10"},
        {"Ad ID": "1", "Ad Name": "Ad one", "Placement ID": "11"},
        {"Ad ID": "2", "Ad Name": "Ad two", "Placement ID": "10"},
    ]


def test_rows_sharing_a_key_collapse_into_one():
    """Test that duplicate keys are represented by their first row."""
    store = InMemoryTabularStore({"Ad": ad_rows()})

    feed = TabularFeed(store, "Ad", ["Ad ID"]).load()

    assert len(feed) == 2
    first = feed.next()
    assert first["Placement ID"] == "10"
    assert first.duplicates == [{"Ad ID": "1", "Ad Name": "Ad one", "Placement ID": "11"}]
    assert feed.next()["Ad ID"] == "2"
    assert feed.next() is None


def test_save_copies_edits_to_duplicates():
    """Test that editing a representative updates every row with its key."""
    store = InMemoryTabularStore({"Ad": ad_rows()})
    feed = TabularFeed(store, "Ad", ["Ad ID"]).load()

    feed.next()["Ad Name"] = "Renamed"
    feed.save()

    rows = store.read_rows("Ad")
    assert [r["Ad Name"] for r in rows] == ["Renamed", "Renamed", "Ad two"]
    assert [r["Placement ID"] for r in rows] == ["10", "11", "10"]


def test_save_without_edits_leaves_table_unchanged():
    """Test that loading and saving round-trips the table."""
    store = InMemoryTabularStore({"Ad": ad_rows()})

    TabularFeed(store, "Ad", ["Ad ID"]).load().save()

    assert store.read_rows("Ad") == ad_rows()


def test_rows_without_key_values_are_unkeyed():
    """Test that rows with a blank key share one unkeyed representative."""
    store = InMemoryTabularStore(
        {"Ad": [{"Ad ID": "", "Ad Name": "a"}, {"Ad ID": None, "Ad Name": "b"}]}
    )

    feed = TabularFeed(store, "Ad", ["Ad ID"]).load()

    assert len(feed) == 1
    assert feed.rows[0].unkeyed


def test_composite_keys():
    """Test that every key column takes part in deduplication."""
    store = InMemoryTabularStore({"Ad Placement Assignment": ad_rows()})

    feed = TabularFeed(store, "Ad Placement Assignment", ["Ad ID", "Placement ID"]).load()

    assert len(feed) == 3
    assert feed.generate_key({"Ad ID": " 1 ", "Placement ID": 10}) == "1|10"


def test_separator_inside_key_values_does_not_merge_rows():
    """Test that values containing the key separator keep distinct rows apart."""
    store = InMemoryTabularStore(
        {"Assignment": [{"A": "a|b", "B": "c", "N": 1}, {"A": "a", "B": "b|c", "N": 2}]}
    )

    feed = TabularFeed(store, "Assignment", ["A", "B"]).load()

    assert len(feed) == 2
    assert feed.generate_key({"A": "a|b", "B": "c"}) != feed.generate_key({"A": "a", "B": "b|c"})
    assert feed.generate_key({"A": "a\\", "B": "|c"}) != feed.generate_key({"A": "a", "B": "\\|c"})


def test_no_keys_means_no_deduplication():
    """Test that a feed without keys keeps every row."""
    store = InMemoryTabularStore({"Log": [{"Message": "x"}, {"Message": "x"}]})

    assert len(TabularFeed(store, "Log").load()) == 2


def test_first_existing_candidate_table_is_used():
    """Test that candidate tables are tried in order."""
    store = InMemoryTabularStore({"QA": [{"Ad ID": "1"}]})

    feed = TabularFeed(store, ["Ad", "QA"], ["Ad ID"])

    assert feed.table == "QA"
    assert len(feed.load()) == 1


def test_missing_table_gives_empty_feed():
    """Test that a feed over no existing table is empty and save is a no-op."""
    store = InMemoryTabularStore()

    feed = TabularFeed(store, "Ad", ["Ad ID"]).load()

    assert feed.is_empty()
    feed.save()
    assert store.table_names() == []


def test_set_feed_replaces_rows_and_shrinks_table():
    """Test that saving fewer rows than the table held drops the rest."""
    store = InMemoryTabularStore({"Ad": ad_rows()})

    TabularFeed(store, "Ad", ["Ad ID"]).set_feed([{"Ad ID": "3", "Ad Name": "Three"}]).save()

    assert store.read_rows("Ad") == [{"Ad ID": "3", "Ad Name": "Three", "Placement ID": None}]


def test_changed_fields_ignores_child_lists_and_bookkeeping():
    """Test that nested lists and underscore fields are not reported as edits."""
    row = FeedRow.from_row({"Ad ID": "1", "Ad Name": "a", "_row_id": 5})

    row["Ad Name"] = "b"
    row["_row_id"] = 6
    row["creativeAssignments"] = [{"Creative ID": "9"}]

    assert row.changed_fields() == {"Ad Name": "b"}


def test_reset_restarts_iteration():
    """Test that reset moves the cursor back before the first row."""
    store = InMemoryTabularStore({"Ad": ad_rows()})
    feed = TabularFeed(store, "Ad", ["Ad ID"]).load()
    feed.next()
    feed.next()

    feed.reset()

    assert feed.next()["Ad ID"] == "1"
