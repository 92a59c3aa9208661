"""出版物タグDBの健全性チェックを行い、TSVレポートを出力する。

UNIQUE 制約の無い旧DBや、重複チェックをしないブックマーク追加で生じる
不整合（同名タグ、重複関係、重複ブックマーク、孤立した関係）を洗い出す。
"""

from __future__ import annotations

import argparse
import csv
import sqlite3
from collections.abc import Iterable, Sequence
from pathlib import Path

from loguru import logger


def _write_tsv(path: Path, header: Sequence[str], rows: Iterable[Sequence[object]]) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, delimiter="\t")
        writer.writerow(list(header))
        count = 0
        for r in rows:
            writer.writerow(["" if v is None else v for v in r])
            count += 1
    return count


def _fetchall(con: sqlite3.Connection, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
    cur = con.execute(sql, params)
    return cur.fetchall()


def run_health_checks(db_path: Path, out_dir: Path) -> Path:
    db_path = Path(db_path)
    out_dir = Path(out_dir)
    if not db_path.exists():
        raise FileNotFoundError(db_path)
    out_dir.mkdir(parents=True, exist_ok=True)

    con = sqlite3.connect(db_path)
    try:
        con.row_factory = sqlite3.Row

        quick_check_rows = _fetchall(con, "PRAGMA quick_check;")
        quick_check = "|".join([r[0] for r in quick_check_rows]) if quick_check_rows else ""

        totals = {
            "tags": _fetchall(con, "SELECT COUNT(*) AS n FROM TAGS;")[0]["n"],
            "relations": _fetchall(con, "SELECT COUNT(*) AS n FROM RELATIONS;")[0]["n"],
            "bookmarks": _fetchall(con, "SELECT COUNT(*) AS n FROM BOOKMARKS;")[0]["n"],
        }

        # Duplicates
        dup_tags = _fetchall(
            con,
            """
            SELECT name, COUNT(*) AS n, GROUP_CONCAT(tag_id) AS tag_ids
            FROM TAGS
            GROUP BY name
            HAVING n > 1
            ORDER BY n DESC, name
            """,
        )
        dup_tags_count = _write_tsv(
            out_dir / "duplicate_tag_names.tsv",
            ["name", "count", "tag_ids"],
            [(r["name"], r["n"], r["tag_ids"]) for r in dup_tags],
        )

        dup_relations = _fetchall(
            con,
            """
            SELECT pub_id, tag_id, COUNT(*) AS n
            FROM RELATIONS
            GROUP BY pub_id, tag_id
            HAVING n > 1
            ORDER BY n DESC, pub_id, tag_id
            """,
        )
        dup_relations_count = _write_tsv(
            out_dir / "duplicate_relations.tsv",
            ["pub_id", "tag_id", "count"],
            [(r["pub_id"], r["tag_id"], r["n"]) for r in dup_relations],
        )

        dup_bookmarks = _fetchall(
            con,
            """
            SELECT pub_id, user_id, COUNT(*) AS n, GROUP_CONCAT(bookmark_id) AS bookmark_ids
            FROM BOOKMARKS
            GROUP BY pub_id, user_id
            HAVING n > 1
            ORDER BY n DESC, user_id, pub_id
            """,
        )
        dup_bookmarks_count = _write_tsv(
            out_dir / "duplicate_bookmarks.tsv",
            ["pub_id", "user_id", "count", "bookmark_ids"],
            [(r["pub_id"], r["user_id"], r["n"], r["bookmark_ids"]) for r in dup_bookmarks],
        )

        # Orphans
        orphan_relations = _fetchall(
            con,
            """
            SELECT r.relation_id, r.pub_id, r.tag_id
            FROM RELATIONS r
            LEFT JOIN TAGS t ON t.tag_id = r.tag_id
            WHERE t.tag_id IS NULL
            ORDER BY r.tag_id, r.pub_id
            """,
        )
        orphan_relations_count = _write_tsv(
            out_dir / "orphan_relations.tsv",
            ["relation_id", "pub_id", "tag_id"],
            [(r["relation_id"], r["pub_id"], r["tag_id"]) for r in orphan_relations],
        )

        # 空のタグ名（正規化を通さずに書き込まれた行）
        empty_names = _fetchall(
            con,
            "SELECT tag_id, name FROM TAGS WHERE TRIM(name) = '' ORDER BY tag_id",
        )
        empty_names_count = _write_tsv(
            out_dir / "empty_tag_names.tsv",
            ["tag_id", "name"],
            [(r["tag_id"], r["name"]) for r in empty_names],
        )

        summary_out = out_dir / "db_health_summary.tsv"
        _write_tsv(
            summary_out,
            ["metric", "value"],
            [
                ("db_path", str(db_path)),
                ("quick_check", quick_check),
                ("total_tags", totals["tags"]),
                ("total_relations", totals["relations"]),
                ("total_bookmarks", totals["bookmarks"]),
                ("duplicate_tag_names", dup_tags_count),
                ("duplicate_relations", dup_relations_count),
                ("duplicate_bookmarks", dup_bookmarks_count),
                ("orphan_relations", orphan_relations_count),
                ("empty_tag_names", empty_names_count),
            ],
        )

        problems = (
            dup_tags_count + dup_relations_count + dup_bookmarks_count + orphan_relations_count + empty_names_count
        )
        if problems:
            logger.warning(f"Health check found {problems} problem row(s): {summary_out}")
        else:
            logger.info(f"Health check passed: {db_path}")

        return summary_out
    finally:
        con.close()


def main() -> None:
    p = argparse.ArgumentParser(description="Check publication tag DB health and write TSV reports.")
    p.add_argument("--db", type=Path, required=True, help="Path to SQLite DB file")
    p.add_argument("--out-dir", type=Path, required=True, help="Output directory for TSV reports")
    args = p.parse_args()

    summary = run_health_checks(args.db, args.out_dir)
    print(f"Wrote health reports: {summary.parent}")


if __name__ == "__main__":
    main()
