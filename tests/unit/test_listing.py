"""listing.py のユニットテスト（TagQuery による条件付き一覧）."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest

from publication_tag_db.core.bookmarks import BookmarkStore
from publication_tag_db.core.database import connect, create_database
from publication_tag_db.core.listing import TagQuery, count_tags, get_tags
from publication_tag_db.core.store import TagStore


@pytest.fixture
def store(tmp_path: Path) -> Iterator[TagStore]:
    db_path = tmp_path / "tags.db"
    create_database(db_path)
    conn = connect(db_path)
    try:
        yield TagStore(conn)
    finally:
        conn.close()


@pytest.fixture
def tag_ids(store: TagStore) -> dict[str, int]:
    """pub 1: php, python / pub 2: php, sql / pub 3: sql（user 7 が pub 2, 3 をブックマーク）."""
    ids = {name: store.create_tag(name) for name in ("php", "python", "sql")}
    for pub_id, names in {1: ["php", "python"], 2: ["php", "sql"], 3: ["sql"]}.items():
        for name in names:
            store.create_relation(pub_id, ids[name])
    bookmarks = BookmarkStore(store.connection)
    bookmarks.add_bookmark(2, 7)
    bookmarks.add_bookmark(3, 7)
    return ids


class TestTagQuery:
    def test_defaults(self) -> None:
        query = TagQuery()
        assert query.order == "ASC"
        assert query.limit is None
        assert query.predicate().is_match_all

    def test_order_is_normalized(self) -> None:
        assert TagQuery(order="desc").order == "DESC"

    def test_invalid_values(self) -> None:
        with pytest.raises(ValueError):
            TagQuery(order="sideways")
        with pytest.raises(ValueError):
            TagQuery(limit=-1)
        with pytest.raises(ValueError):
            TagQuery(offset=-5)

    def test_predicate_clause_order(self) -> None:
        predicate = TagQuery(pub_ids="1", user_ids="2", search="p", exclude="3").predicate()
        assert predicate.sql == (
            "(r.pub_id = ?) AND (b.user_id = ?) AND (t.name LIKE ? ESCAPE '\\') AND (r.tag_id != ?)"
        )
        assert predicate.params == (1, 2, "%p%", 3)


class TestGetTags:
    def test_no_criteria_matches_everything(self, store: TagStore, tag_ids: dict[str, int]) -> None:
        assert count_tags(store, TagQuery()) == count_tags(store) == store.count_tags()
        assert len(get_tags(store)) == 5

    def test_filter_by_publications(self, store: TagStore, tag_ids: dict[str, int]) -> None:
        rows = get_tags(store, TagQuery(pub_ids="1, 3"))
        assert [(r.name, r.pub_id) for r in rows] == [("php", 1), ("python", 1), ("sql", 3)]

    def test_malformed_ids_do_not_break_query(self, store: TagStore, tag_ids: dict[str, int]) -> None:
        rows = get_tags(store, TagQuery(pub_ids="abc,3"))
        assert [(r.name, r.pub_id) for r in rows] == [("sql", 3)]

    def test_filter_by_user(self, store: TagStore, tag_ids: dict[str, int]) -> None:
        rows = get_tags(store, TagQuery(user_ids=[7], group_by=True))
        assert [r.name for r in rows] == ["php", "sql"]

    def test_exclude(self, store: TagStore, tag_ids: dict[str, int]) -> None:
        query = TagQuery(exclude=[tag_ids["php"], tag_ids["sql"]])
        rows = get_tags(store, query)
        assert [r.name for r in rows] == ["python"]
        assert count_tags(store, query) == 1

    def test_search(self, store: TagStore, tag_ids: dict[str, int]) -> None:
        rows = get_tags(store, TagQuery(search="P", group_by=True))
        assert [r.name for r in rows] == ["php", "python"]

    def test_limit_offset_and_order(self, store: TagStore, tag_ids: dict[str, int]) -> None:
        rows = get_tags(store, TagQuery(group_by=True, order="DESC", limit=2))
        assert [r.name for r in rows] == ["sql", "python"]

        rows = get_tags(store, TagQuery(group_by=True, limit=10, offset=1))
        assert [r.name for r in rows] == ["python", "sql"]

        # count は limit/offset を無視する
        assert count_tags(store, TagQuery(group_by=True, limit=1)) == 3


def test_connection_is_not_closed_by_store(tmp_path: Path) -> None:
    db_path = tmp_path / "tags.db"
    create_database(db_path)
    conn = connect(db_path)
    try:
        store = TagStore(conn)
        get_tags(store)
        assert conn.execute("SELECT 1").fetchone() == (1,)
    finally:
        conn.close()
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")
