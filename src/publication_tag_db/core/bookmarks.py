"""ブックマーク（ユーザー × 出版物）のストア.

注意:
    add_bookmark() は既存チェックをしないため、同じ (pub_id, user_id) の
    ブックマークが重複しうる。重複は tools.report_db_health で検出する。
"""

from __future__ import annotations

from loguru import logger

from .models import Bookmark
from .normalize import coerce_int
from .store import SQLiteStore


class BookmarkStore(SQLiteStore):
    """BOOKMARKS のストア."""

    def get_bookmarks(self, user_id: object) -> list[Bookmark]:
        """ユーザーのブックマークを bookmark_id 順で返す."""
        user_id = coerce_int(user_id)
        rows = self._fetchall(
            "list bookmarks",
            "SELECT bookmark_id, pub_id, user_id FROM BOOKMARKS WHERE user_id = ? ORDER BY bookmark_id",
            (user_id,),
        )
        return [Bookmark(bookmark_id=r[0], pub_id=r[1], user_id=r[2]) for r in rows]

    def add_bookmark(self, pub_id: object, user_id: object) -> int:
        """ブックマークを追加して bookmark_id を返す（重複チェックなし）."""
        pub_id = coerce_int(pub_id)
        user_id = coerce_int(user_id)
        with self.transaction(), self._errors("add bookmark"):
            cur = self._conn.execute(
                "INSERT INTO BOOKMARKS (pub_id, user_id) VALUES (?, ?)",
                (pub_id, user_id),
            )
        logger.debug(f"Added bookmark: pub_id={pub_id}, user_id={user_id} (bookmark_id={cur.lastrowid})")
        return int(cur.lastrowid)

    def delete_bookmark(self, bookmark_id: object) -> bool:
        """ブックマークを削除する。対象が無ければ False."""
        with self.transaction(), self._errors("delete bookmark"):
            cur = self._conn.execute(
                "DELETE FROM BOOKMARKS WHERE bookmark_id = ?",
                (coerce_int(bookmark_id),),
            )
        return cur.rowcount > 0

    def bookmark_exists(self, pub_id: object, user_id: object) -> bool:
        row = self._fetchone(
            "check bookmark",
            "SELECT 1 FROM BOOKMARKS WHERE pub_id = ? AND user_id = ? LIMIT 1",
            (coerce_int(pub_id), coerce_int(user_id)),
        )
        return row is not None
