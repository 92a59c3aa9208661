"""cloud.py のユニットテスト（タグクラウドの頻度集計）."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from pathlib import Path

import polars as pl
import pytest

from publication_tag_db.core.cloud import (
    CloudInfo,
    CloudOptions,
    TagCloud,
    build_cloud,
    get_tag_cloud,
    tag_histogram,
)
from publication_tag_db.core.database import connect, create_database
from publication_tag_db.core.store import TagStore


def _histogram(counts: dict[str, int]) -> pl.DataFrame:
    names = list(counts)
    return pl.DataFrame(
        {
            "tag_id": list(range(1, len(names) + 1)),
            "name": names,
            "count": [counts[n] for n in names],
        }
    )


class TestBuildCloud:
    """build_cloud関数のテスト."""

    def test_includes_ties_at_boundary(self) -> None:
        cloud = build_cloud(_histogram({"A": 5, "B": 3, "C": 3, "D": 1}), 2)

        assert [t.name for t in cloud.tags] == ["A", "B", "C"]
        assert cloud.info == CloudInfo(max=5, min=1)

    def test_without_ties(self) -> None:
        cloud = build_cloud(_histogram({"A": 5, "B": 3, "C": 3, "D": 1}), 2, include_ties=False)
        assert [t.name for t in cloud.tags] == ["A", "B"]

    def test_single_top_tag(self) -> None:
        cloud = build_cloud(_histogram({"A": 5, "B": 3, "C": 3}), 1)

        assert [(t.name, t.count) for t in cloud.tags] == [("A", 5)]
        assert cloud.info == CloudInfo(max=5, min=3)

    def test_all_tags_sorted_by_name(self) -> None:
        cloud = build_cloud(_histogram({"zeta": 1, "alpha": 2, "mid": 9}))
        assert [t.name for t in cloud.tags] == ["alpha", "mid", "zeta"]
        assert [t.count for t in cloud.tags] == [2, 9, 1]

    def test_number_tags_larger_than_histogram(self) -> None:
        cloud = build_cloud(_histogram({"A": 2, "B": 1}), 10)
        assert [t.name for t in cloud.tags] == ["A", "B"]

    @pytest.mark.parametrize("number_tags", [0, -3])
    def test_non_positive_number_tags(self, number_tags: int) -> None:
        cloud = build_cloud(_histogram({"A": 2, "B": 1}), number_tags)
        assert cloud.tags == []
        assert cloud.info == CloudInfo(max=2, min=1)

    def test_empty_histogram(self) -> None:
        cloud = build_cloud(tag_histogram(pl.DataFrame()), 5)
        assert cloud == TagCloud(tags=[], info=CloudInfo(max=0, min=0))

    def test_as_dict(self) -> None:
        cloud = build_cloud(_histogram({"php": 4, "sql": 2}), 1)
        assert cloud.as_dict() == {
            "tags": [{"tagPeak": 4, "name": "php", "tag_id": 1}],
            "info": {"max": 4, "min": 2},
        }


class TestTagHistogram:
    def test_counts_per_tag(self) -> None:
        frame = pl.DataFrame(
            {
                "relation_id": [1, 2, 3],
                "tag_id": [10, 10, 20],
                "name": ["php", "php", "sql"],
            }
        )

        histogram = tag_histogram(frame).sort("tag_id")

        assert histogram.columns == ["tag_id", "name", "count"]
        assert histogram.rows() == [(10, "php", 2), (20, "sql", 1)]


@pytest.fixture
def store(tmp_path: Path) -> Iterator[TagStore]:
    """php: pub 1, 2, 3 / sql: pub 2, 3 / go: pub 3.

    pub 1, 2 は article、pub 3 は book。user 7 と 8 がともに pub 3 をブックマーク。
    """
    db_path = tmp_path / "tags.db"
    create_database(db_path)
    conn = connect(db_path)
    try:
        store = TagStore(conn)
        ids = {name: store.create_tag(name) for name in ("php", "sql", "go")}
        for pub_id, names in {1: ["php"], 2: ["php", "sql"], 3: ["php", "sql", "go"]}.items():
            for name in names:
                store.create_relation(pub_id, ids[name])
        conn.execute(
            "INSERT INTO PUBLICATIONS (pub_id, type, title) VALUES "
            "(1, 'article', 'a'), (2, 'article', 'b'), (3, 'book', 'c')"
        )
        conn.execute("INSERT INTO BOOKMARKS (pub_id, user_id) VALUES (3, 7), (3, 8), (1, 8)")
        yield store
    finally:
        conn.close()


def _counts(cloud: TagCloud) -> dict[str, int]:
    return {t.name: t.count for t in cloud.tags}


class TestGetTagCloud:
    def test_no_filters(self, store: TagStore) -> None:
        cloud = get_tag_cloud(store)

        assert _counts(cloud) == {"go": 1, "php": 3, "sql": 2}
        assert cloud.info == CloudInfo(max=3, min=1)

    def test_filter_by_type(self, store: TagStore) -> None:
        cloud = get_tag_cloud(store, CloudOptions(type="article"))
        assert _counts(cloud) == {"php": 2, "sql": 1}

    def test_bookmarks_do_not_inflate_counts(self, store: TagStore) -> None:
        """pub 3 を2ユーザーがブックマークしても1回として数える."""
        cloud = get_tag_cloud(store, CloudOptions(user="7,8"))

        assert _counts(cloud) == {"go": 1, "php": 2, "sql": 1}

    def test_exclude_and_number_tags(self, store: TagStore) -> None:
        php = store.find_tag_by_name("php")
        assert php is not None

        cloud = get_tag_cloud(store, CloudOptions(exclude=str(php.tag_id), number_tags=1))

        assert _counts(cloud) == {"sql": 2}
        assert cloud.info == CloudInfo(max=2, min=1)

    def test_no_matches(self, store: TagStore) -> None:
        cloud = get_tag_cloud(store, CloudOptions(user="999"))
        assert cloud.tags == []
        assert cloud.info == CloudInfo(max=0, min=0)


def test_cloud_reads_do_not_modify_store(store: TagStore) -> None:
    conn: sqlite3.Connection = store.connection
    before = conn.execute("SELECT COUNT(*) FROM RELATIONS").fetchone()[0]
    get_tag_cloud(store, CloudOptions(number_tags=2))
    assert conn.execute("SELECT COUNT(*) FROM RELATIONS").fetchone()[0] == before
    assert not conn.in_transaction
