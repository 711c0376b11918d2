from pathlib import Path

import pytest

from markerclust.store import SQLiteReadStore, StoreError


def _fill(store, n=12):
    rows = []
    for i in range(n):
        sample = "S1" if i % 2 == 0 else "S2"
        rows.append((f"r{i:02d}", sample, "ACGT" * 5, "I" * 20))
    assert store.add_reads(rows) == n


def test_count_and_samples(store):
    _fill(store)
    assert store.count() == 12
    assert store.count("S1") == 6
    assert store.count("missing") == 0
    assert store.samples() == ["S1", "S2"]


def test_fetch_batch_is_ordered_and_bounded(store):
    _fill(store)
    first = store.fetch_batch(None, 0, 5)
    second = store.fetch_batch(None, 5, 5)
    third = store.fetch_batch(None, 10, 5)
    ids = [r.read_id for r in first + second + third]
    assert len(first) == 5 and len(third) == 2
    assert ids == sorted(ids)
    assert len(set(ids)) == 12

    s1 = store.fetch_batch("S1", 0, 100)
    assert [r.identifier for r in s1] == [f"r{i:02d}" for i in range(0, 12, 2)]
    assert store.fetch_batch("S1", 6, 10) == []


def test_append_columns_is_idempotent(store):
    _fill(store)
    rid = store.fetch_batch(None, 0, 1)[0].read_id

    store.append_columns(rid, {"marker_count": 3, "trim_start": 38})
    state_once = (store.columns(), store.get_columns(rid, ["marker_count", "trim_start"]))
    store.append_columns(rid, {"marker_count": 3, "trim_start": 38})
    state_twice = (store.columns(), store.get_columns(rid, ["marker_count", "trim_start"]))

    assert state_once == state_twice
    assert state_twice[1] == {"marker_count": 3, "trim_start": 38}


def test_last_write_wins(store):
    _fill(store)
    rid = store.fetch_batch(None, 0, 1)[0].read_id
    store.append_columns(rid, {"marker_count": 1})
    store.append_columns(rid, {"marker_count": 0})
    assert store.get_columns(rid, ["marker_count"]) == {"marker_count": 0}


def test_unknown_read_id_writes_nothing(store):
    _fill(store)
    rid = store.fetch_batch(None, 0, 1)[0].read_id
    with pytest.raises(StoreError):
        store.append_columns_many([(rid, {"marker_count": 2}), (99999, {"marker_count": 2})])
    assert "marker_count" not in store.columns()


def test_column_names_are_checked(store):
    _fill(store)
    rid = store.fetch_batch(None, 0, 1)[0].read_id
    with pytest.raises(StoreError):
        store.append_columns(rid, {"bad name; DROP TABLE reads": 1})
    with pytest.raises(StoreError):
        store.append_columns(rid, {"sequence": "AAAA"})
    with pytest.raises(StoreError):
        store.list_columns("S1", ["not_there"])


def test_transaction_rolls_back_on_error(store):
    _fill(store)
    rid = store.fetch_batch(None, 0, 1)[0].read_id
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.append_columns(rid, {"marker_count": 5})
            raise RuntimeError("interrupted")
    assert "marker_count" not in store.columns()


def test_list_columns_with_filter(store):
    _fill(store)
    reads = store.fetch_batch("S1", 0, 100)
    store.append_columns_many((r.read_id, {"marker_count": i}) for i, r in enumerate(reads))

    rows = store.list_columns("S1", ["identifier", "marker_count"], where="marker_count >= ?", params=(4,))
    assert [(ident, n) for _rid, ident, n in rows] == [("r08", 4), ("r10", 5)]


def test_clear_column_is_scoped_to_sample(store):
    _fill(store)
    s1 = store.fetch_batch("S1", 0, 1)[0].read_id
    s2 = store.fetch_batch("S2", 0, 1)[0].read_id
    store.append_columns_many([(s1, {"cluster": 1}), (s2, {"cluster": 1})])
    store.clear_column("S1", "cluster")
    assert store.get_columns(s1, ["cluster"]) == {"cluster": None}
    assert store.get_columns(s2, ["cluster"]) == {"cluster": 1}


def test_missing_store_file(tmp_path: Path):
    with pytest.raises(StoreError):
        SQLiteReadStore(tmp_path / "nope.sqlite", create=False)


def test_store_persists_to_disk(tmp_path: Path):
    path = tmp_path / "reads.sqlite"
    with SQLiteReadStore(path) as s:
        s.add_reads([("a", "S1", "ACGT", "IIII")])
        s.append_columns(s.fetch_batch(None, 0, 1)[0].read_id, {"marker_count": 1})

    with SQLiteReadStore(path, create=False) as s:
        rid = s.fetch_batch(None, 0, 1)[0].read_id
        assert s.get_columns(rid, ["marker_count"]) == {"marker_count": 1}
