"""タグストア（TAGS / RELATIONS への単純なキー操作と述語駆動の読み取り）.

呼び出し側が所有する sqlite3.Connection を受け取り、単一行の作成・参照・削除と
コンパイル済み Predicate による絞り込み読み取りを提供します。

注意:
    - 変更系メソッドはそれぞれ transaction() 内で実行される。
      外側で transaction() を開いていれば、その一部として実行される（入れ子は外側に合流）。
    - sqlite3.IntegrityError は ConstraintViolationError、
      その他の sqlite3.Error は StoreUnavailableError に変換する。
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

import polars as pl
from loguru import logger

from .criteria import MATCH_ALL, Predicate, compile_criteria, search
from .exceptions import ConstraintViolationError, InvalidTagNameError, StoreUnavailableError
from .models import Relation, Tag, TagRow, TagUsage
from .normalize import coerce_int

_ORDERS = {"ASC", "DESC"}

RELATION_FRAME_SCHEMA = {"relation_id": pl.Int64, "tag_id": pl.Int64, "name": pl.String}


def order_keyword(order: str) -> str:
    """ORDER BY の方向を検証して返す（ASC/DESC 以外は ValueError）."""
    keyword = str(order).strip().upper()
    if keyword not in _ORDERS:
        raise ValueError(f"Invalid order: {order!r} (expected 'ASC' or 'DESC')")
    return keyword


def _limit_clause(limit: int | None, offset: int) -> tuple[str, tuple[int, ...]]:
    if limit is not None:
        return " LIMIT ? OFFSET ?", (max(int(limit), 0), max(int(offset), 0))
    if offset:
        return " LIMIT -1 OFFSET ?", (max(int(offset), 0),)
    return "", ()


def _joins_for(predicate: Predicate) -> str:
    joins = ""
    if predicate.uses("p"):
        joins += " INNER JOIN PUBLICATIONS p ON p.pub_id = r.pub_id"
    if predicate.uses("b"):
        joins += " INNER JOIN BOOKMARKS b ON b.pub_id = r.pub_id"
    return joins


class SQLiteStore:
    """接続・トランザクション・例外変換を共有するストアの基底クラス.

    Args:
        conn: 呼び出し側が所有する接続（database.connect() 推奨）。close() はしない。
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._depth = 0

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # transaction / error translation
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """BEGIN IMMEDIATE … COMMIT のスコープ。例外時は ROLLBACK して再送出する.

        開始時に書き込みロックを取る。別接続が書き込み中なら busy_timeout まで待ち、
        その接続のコミット後の状態から処理を始める（検索 → 作成の途中で
        読み取りロックから書き込みロックへの昇格に失敗しない）。

        入れ子の呼び出しは外側のトランザクションに合流する。
        呼び出し側が既にトランザクションを開いている接続では BEGIN/COMMIT を発行しない。
        """
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        owns = not self._conn.in_transaction
        with self._errors("begin transaction"):
            if owns:
                self._conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield
        except BaseException:
            if owns and self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back")
            raise
        else:
            if owns:
                with self._errors("commit"):
                    self._conn.execute("COMMIT")
        finally:
            self._depth = 0

    @contextmanager
    def _errors(
        self,
        action: str,
        *,
        table: str | None = None,
        key: tuple[object, ...] = (),
    ) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError as e:
            if table is None:
                logger.error(f"Store failure during {action}: {e}")
                raise StoreUnavailableError(f"{action} failed: {e}") from e
            raise ConstraintViolationError(table, key) from e
        except sqlite3.Error as e:
            logger.error(f"Store failure during {action}: {e}")
            raise StoreUnavailableError(f"{action} failed: {e}") from e

    def _fetchall(self, action: str, sql: str, params: Iterable[object] = ()) -> list[tuple]:
        with self._errors(action):
            return self._conn.execute(sql, tuple(params)).fetchall()

    def _fetchone(self, action: str, sql: str, params: Iterable[object] = ()) -> tuple | None:
        with self._errors(action):
            return self._conn.execute(sql, tuple(params)).fetchone()


class TagStore(SQLiteStore):
    """TAGS / RELATIONS のストア."""

    # ------------------------------------------------------------------
    # TAGS
    # ------------------------------------------------------------------

    def find_tag_by_name(self, name: str) -> Tag | None:
        """名前が完全一致するタグを返す（大文字小文字は区別する）."""
        row = self._fetchone(
            "find tag",
            "SELECT tag_id, name FROM TAGS WHERE name = ?",
            (name,),
        )
        return Tag(tag_id=row[0], name=row[1]) if row else None

    def get_tag(self, tag_id: int) -> Tag | None:
        row = self._fetchone(
            "get tag",
            "SELECT tag_id, name FROM TAGS WHERE tag_id = ?",
            (coerce_int(tag_id),),
        )
        return Tag(tag_id=row[0], name=row[1]) if row else None

    def create_tag(self, name: str) -> int:
        """タグを作成して tag_id を返す.

        Raises:
            InvalidTagNameError: 名前が空の場合
            ConstraintViolationError: 同名タグが既に存在する場合
        """
        if not name or not name.strip():
            raise InvalidTagNameError(name)
        with self.transaction(), self._errors("create tag", table="TAGS", key=(name,)):
            cur = self._conn.execute("INSERT INTO TAGS (name) VALUES (?)", (name,))
        logger.debug(f"Created tag: {name!r} (tag_id={cur.lastrowid})")
        return int(cur.lastrowid)

    def rename_tag(self, tag_id: int, name: str) -> bool:
        """タグ名を変更する。対象が無ければ False."""
        if not name or not name.strip():
            raise InvalidTagNameError(name)
        with self.transaction(), self._errors("rename tag", table="TAGS", key=(name,)):
            cur = self._conn.execute(
                "UPDATE TAGS SET name = ? WHERE tag_id = ?",
                (name, coerce_int(tag_id)),
            )
        return cur.rowcount > 0

    def delete_tag(self, tag_id: int) -> bool:
        """タグと、そのタグの全 RELATIONS を削除する。対象が無ければ False."""
        tag_id = coerce_int(tag_id)
        with self.transaction(), self._errors("delete tag"):
            self._conn.execute("DELETE FROM RELATIONS WHERE tag_id = ?", (tag_id,))
            cur = self._conn.execute("DELETE FROM TAGS WHERE tag_id = ?", (tag_id,))
        return cur.rowcount > 0

    def delete_tags(self, tag_ids: Iterable[object]) -> int:
        """複数タグを削除し、削除したタグ数を返す."""
        deleted = 0
        with self.transaction():
            for tag_id in tag_ids:
                deleted += int(self.delete_tag(coerce_int(tag_id)))
        logger.info(f"Deleted {deleted} tag(s)")
        return deleted

    # ------------------------------------------------------------------
    # RELATIONS
    # ------------------------------------------------------------------

    def relation_exists(self, pub_id: int, tag_id: int) -> bool:
        row = self._fetchone(
            "check relation",
            "SELECT 1 FROM RELATIONS WHERE pub_id = ? AND tag_id = ? LIMIT 1",
            (pub_id, tag_id),
        )
        return row is not None

    def get_relations(self, pub_id: int) -> list[Relation]:
        """出版物に紐づく RELATIONS を tag_id 順で返す."""
        rows = self._fetchall(
            "list relations",
            "SELECT relation_id, pub_id, tag_id FROM RELATIONS WHERE pub_id = ? ORDER BY tag_id",
            (coerce_int(pub_id),),
        )
        return [Relation(relation_id=r[0], pub_id=r[1], tag_id=r[2]) for r in rows]

    def create_relation(self, pub_id: int, tag_id: int) -> int:
        """出版物とタグの関係を作成して relation_id を返す.

        Raises:
            ConstraintViolationError: 同じ (pub_id, tag_id) が既に存在する、
                または tag_id が存在しない場合
        """
        with self.transaction(), self._errors(
            "create relation", table="RELATIONS", key=(pub_id, tag_id)
        ):
            cur = self._conn.execute(
                "INSERT INTO RELATIONS (pub_id, tag_id) VALUES (?, ?)",
                (pub_id, tag_id),
            )
        logger.debug(f"Created relation: pub_id={pub_id}, tag_id={tag_id}")
        return int(cur.lastrowid)

    def delete_relation_by_pub_and_tag(self, pub_id: int, tag_id: int) -> int:
        """(pub_id, tag_id) の関係を削除し、削除行数を返す."""
        with self.transaction(), self._errors("delete relation"):
            cur = self._conn.execute(
                "DELETE FROM RELATIONS WHERE pub_id = ? AND tag_id = ?",
                (pub_id, tag_id),
            )
        return cur.rowcount

    def delete_relation_by_id(self, relation_id: int) -> bool:
        with self.transaction(), self._errors("delete relation"):
            cur = self._conn.execute(
                "DELETE FROM RELATIONS WHERE relation_id = ?",
                (coerce_int(relation_id),),
            )
        return cur.rowcount > 0

    def delete_relations(self, relation_ids: Iterable[object]) -> int:
        """relation_id のリストで関係を削除し、削除行数を返す."""
        deleted = 0
        with self.transaction():
            for relation_id in relation_ids:
                deleted += int(self.delete_relation_by_id(coerce_int(relation_id)))
        return deleted

    # ------------------------------------------------------------------
    # predicate-driven reads
    # ------------------------------------------------------------------

    def _tag_select_sql(self, predicate: Predicate, *, group_by: bool) -> str:
        if group_by:
            select = "SELECT t.name, r.tag_id, NULL, NULL"
            tail = " GROUP BY r.tag_id, t.name"
        else:
            select = "SELECT DISTINCT t.name, r.tag_id, r.pub_id, r.relation_id"
            tail = ""
        return (
            f"{select} FROM RELATIONS r INNER JOIN TAGS t ON t.tag_id = r.tag_id"
            f"{_joins_for(predicate)}{predicate.where()}{tail}"
        )

    def query_tags(
        self,
        predicate: Predicate = MATCH_ALL,
        *,
        order: str = "ASC",
        limit: int | None = None,
        offset: int = 0,
        group_by: bool = False,
    ) -> list[TagRow]:
        """述語で絞り込んだ使用中タグ（RELATIONS 経由）を名前順で返す.

        Args:
            predicate: compile_criteria() の結果
            order: 名前の並び順（ASC/DESC）
            limit: 最大件数（None は無制限）
            offset: 読み飛ばす件数
            group_by: True ならタグ名ごとに1行（pub_id / relation_id は None）
        """
        direction = order_keyword(order)
        sql = self._tag_select_sql(predicate, group_by=group_by)
        if group_by:
            sql += f" ORDER BY t.name {direction}"
        else:
            sql += f" ORDER BY t.name {direction}, r.relation_id {direction}"
        limit_sql, limit_params = _limit_clause(limit, offset)
        rows = self._fetchall("query tags", sql + limit_sql, predicate.params + limit_params)
        return [TagRow(name=r[0], tag_id=r[1], pub_id=r[2], relation_id=r[3]) for r in rows]

    def count_tags(self, predicate: Predicate = MATCH_ALL, *, group_by: bool = False) -> int:
        """query_tags() が（limit なしで）返す行数."""
        sql = self._tag_select_sql(predicate, group_by=group_by)
        row = self._fetchone("count tags", f"SELECT COUNT(*) FROM ({sql})", predicate.params)
        return int(row[0]) if row else 0

    def relation_frame(self, predicate: Predicate = MATCH_ALL) -> pl.DataFrame:
        """述語で絞り込んだ RELATIONS を (relation_id, tag_id, name) の DataFrame で返す.

        BOOKMARKS の JOIN で同じ関係が複数行になっても、relation_id で重複除去される。
        """
        sql = (
            "SELECT DISTINCT r.relation_id, r.tag_id, t.name "
            "FROM RELATIONS r INNER JOIN TAGS t ON t.tag_id = r.tag_id"
            f"{_joins_for(predicate)}{predicate.where()}"
        )
        rows = self._fetchall("read relations", sql, predicate.params)
        if not rows:
            return pl.DataFrame(schema=RELATION_FRAME_SCHEMA)
        return pl.DataFrame(rows, schema=RELATION_FRAME_SCHEMA, orient="row")

    def tag_usage_counts(
        self,
        search_text: str = "",
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TagUsage]:
        """全タグの使用数（RELATIONS 件数、未使用は 0）を名前順で返す.

        Args:
            search_text: タグ名の部分一致検索（空なら全件）
            limit: 最大件数（None は無制限）
            offset: 読み飛ばす件数
        """
        predicate = compile_criteria([search("name", search_text)])
        limit_sql, limit_params = _limit_clause(limit, offset)
        sql = (
            "SELECT t.name, t.tag_id, COUNT(r.relation_id) AS count "
            "FROM TAGS t LEFT JOIN RELATIONS r ON r.tag_id = t.tag_id"
            f"{predicate.where()} GROUP BY t.tag_id, t.name ORDER BY t.name ASC{limit_sql}"
        )
        rows = self._fetchall("count tag usage", sql, predicate.params + limit_params)
        return [TagUsage(name=r[0], tag_id=r[1], count=r[2]) for r in rows]
