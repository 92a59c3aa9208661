"""SQLiteデータベース作成・接続ユーティリティ.

出版物タグDB（TAGS / RELATIONS / BOOKMARKS / PUBLICATIONS）の作成、接続、
インデックス作成、最適化（VACUUM/ANALYZE）を提供します。

注意:
    PRAGMA のうち、cache_size / temp_store / mmap_size / foreign_keys などは接続単位の設定です。
    DBファイルへ恒久的に「書き込まれる設定」ではないため、接続ごとに connect() で適用します。
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from loguru import logger

# PRAGMA は「DBファイルに永続化されるもの」と「接続ごとの一時設定」が混在するため、
# 意図が伝わるように分類して定義する。
PERSISTENT_BUILD_PRAGMAS = [
    "PRAGMA journal_mode = DELETE;",
    "PRAGMA synchronous = NORMAL;",
]
CONNECTION_BUILD_PRAGMAS = [
    "PRAGMA foreign_keys = ON;",
    "PRAGMA cache_size = -32000;",  # 32MB cache
    "PRAGMA temp_store = MEMORY;",
    "PRAGMA busy_timeout = 5000;",  # 同時書き込み時の待機（ms）
]

PERSISTENT_DISTRIBUTION_PRAGMAS = [
    "PRAGMA journal_mode = WAL;",  # WAL有効（読み取り並行性）
    "PRAGMA synchronous = NORMAL;",
]
CONNECTION_DISTRIBUTION_PRAGMAS = [
    "PRAGMA foreign_keys = ON;",
    "PRAGMA cache_size = -64000;",  # 64MB cache
    "PRAGMA temp_store = MEMORY;",
    "PRAGMA busy_timeout = 5000;",  # 同時書き込み時の待機（ms）
]

BUILD_TIME_PRAGMAS = [*PERSISTENT_BUILD_PRAGMAS, *CONNECTION_BUILD_PRAGMAS]


def apply_connection_pragmas(conn: sqlite3.Connection, *, profile: str) -> None:
    """接続ごとに適用が必要な PRAGMA を設定する。"""
    if profile == "build":
        pragmas = CONNECTION_BUILD_PRAGMAS
    elif profile == "distribution":
        pragmas = CONNECTION_DISTRIBUTION_PRAGMAS
    else:
        raise ValueError(f"Unknown PRAGMA profile: {profile!r}")

    for pragma in pragmas:
        conn.execute(pragma)


# 必須インデックス（想定クエリに基づく）
REQUIRED_INDEXES = [
    # RELATIONS: タグ別集計（タグクラウド）・出版物別一覧
    "CREATE INDEX IF NOT EXISTS idx_relations_tag ON RELATIONS(tag_id);",
    "CREATE INDEX IF NOT EXISTS idx_relations_pub ON RELATIONS(pub_id);",
    # BOOKMARKS: ユーザー別一覧・存在確認
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_user ON BOOKMARKS(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_pub_user ON BOOKMARKS(pub_id, user_id);",
    # PUBLICATIONS: 種別フィルタ
    "CREATE INDEX IF NOT EXISTS idx_publications_type ON PUBLICATIONS(type);",
]

# DBスキーマ
#
# NOTE:
# - TAGS.name と RELATIONS(pub_id, tag_id) は UNIQUE 制約で重複を防ぐ。
#   同時実行で「検索 → 作成」が競合した場合は IntegrityError になり、
#   ストア側で ConstraintViolationError として扱う。
# - BOOKMARKS は (pub_id, user_id) の一意性を強制しない（重複はヘルスチェックで検出）。
# - PUBLICATIONS は外部エンティティの最小射影（type フィルタ用）。
# - ID列は AUTOINCREMENT（削除後に同じIDを再利用しない）。
SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS TAGS (
        tag_id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        UNIQUE(name)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS PUBLICATIONS (
        pub_id INTEGER NOT NULL PRIMARY KEY,
        type TEXT NOT NULL,
        title TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS RELATIONS (
        relation_id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
        pub_id INTEGER NOT NULL,
        tag_id INTEGER NOT NULL,
        FOREIGN KEY(tag_id) REFERENCES TAGS(tag_id),
        UNIQUE(pub_id, tag_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS BOOKMARKS (
        bookmark_id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
        pub_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL
    );
    """,
]


def create_schema(db_path: Path | str) -> None:
    """DBスキーマ（テーブル）を作成する."""
    db_path = Path(db_path)
    if not db_path.exists():
        msg = f"Database does not exist: {db_path}"
        raise FileNotFoundError(msg)

    conn = sqlite3.connect(db_path)
    try:
        for stmt in SCHEMA_SQL:
            conn.executescript(stmt)
        conn.commit()
    finally:
        conn.close()


def create_database(db_path: Path | str) -> None:
    """データベースファイルを新規作成する（page_size / auto_vacuum 設定込み）.

    Args:
        db_path: 作成するデータベースファイルパス

    Note:
        page_size と auto_vacuum はDB作成前にのみ有効です。
        既存ファイルに対しては何もしません（警告のみ）。
    """
    db_path = Path(db_path)

    if db_path.exists():
        logger.warning(f"Database already exists: {db_path}")
        return

    db_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Creating database: {db_path}")

    conn = sqlite3.connect(db_path)
    try:
        # DB作成時にのみ有効な設定
        conn.execute("PRAGMA page_size = 4096;")
        conn.execute("PRAGMA auto_vacuum = INCREMENTAL;")

        for pragma in BUILD_TIME_PRAGMAS:
            conn.execute(pragma)
            logger.debug(f"Applied: {pragma}")

        for stmt in SCHEMA_SQL:
            conn.executescript(stmt)

        conn.commit()
        logger.info("Database created successfully")

    except Exception as e:
        logger.error(f"Failed to create database: {e}")
        raise
    finally:
        conn.close()


def connect(db_path: Path | str, *, profile: str = "distribution") -> sqlite3.Connection:
    """既存DBへ接続し、接続単位の PRAGMA を適用した Connection を返す.

    Args:
        db_path: データベースファイルパス
        profile: PRAGMA プロファイル（"build" または "distribution"）

    Returns:
        autocommit（isolation_level=None）の接続。
        トランザクション境界は TagStore.transaction() が明示的に管理する。

    Note:
        接続のクローズは呼び出し側の責務です。
    """
    db_path = Path(db_path)
    if not db_path.exists():
        msg = f"Database does not exist: {db_path}"
        raise FileNotFoundError(msg)

    conn = sqlite3.connect(db_path, isolation_level=None)
    try:
        apply_connection_pragmas(conn, profile=profile)
    except Exception:
        conn.close()
        raise
    return conn


def build_indexes(db_path: Path | str) -> None:
    """必須インデックスを作成する.

    Args:
        db_path: データベースファイルパス
    """
    db_path = Path(db_path)

    if not db_path.exists():
        msg = f"Database does not exist: {db_path}"
        raise FileNotFoundError(msg)

    logger.info(f"Building indexes: {db_path}")

    conn = sqlite3.connect(db_path)
    try:
        for index_sql in REQUIRED_INDEXES:
            logger.debug(f"Creating index: {index_sql}")
            conn.execute(index_sql)

        conn.commit()
        logger.info(f"Created {len(REQUIRED_INDEXES)} indexes successfully")

    except Exception as e:
        logger.error(f"Failed to build indexes: {e}")
        raise
    finally:
        conn.close()


def optimize_database(db_path: Path | str) -> None:
    """データベースを最適化する.

    Args:
        db_path: データベースファイルパス

    Note:
        正しい順序は VACUUM → ANALYZE です。
    """
    db_path = Path(db_path)

    if not db_path.exists():
        msg = f"Database does not exist: {db_path}"
        raise FileNotFoundError(msg)

    logger.info(f"Optimizing database: {db_path}")

    conn = sqlite3.connect(db_path)
    try:
        logger.info("Running VACUUM...")
        conn.execute("VACUUM;")

        logger.info("Running ANALYZE...")
        conn.execute("ANALYZE;")

        logger.info("Applying distribution PRAGMA settings...")
        for pragma in PERSISTENT_DISTRIBUTION_PRAGMAS:
            conn.execute(pragma)
            logger.debug(f"Applied: {pragma}")

        conn.commit()
        logger.info("Optimization complete")

    except Exception as e:
        logger.error(f"Failed to optimize database: {e}")
        raise
    finally:
        conn.close()
