"""出版物タグ関係の一括同期（reconciliation）.

複数の出版物について、
- 削除リストのタグIDとの関係を削除し
- 指定タグ名（カンマ区切り）の関係を、タグが無ければ作成してから追加する
処理を1トランザクションで行います。

注意:
    削除リストは「出版物ごと」ではなく、入力された全出版物に同じように適用されます。
    また削除リストの値は relation_id ではなく tag_id です。
    削除 → 追加の順序で処理するため、同じタグを削除リストと追加リストの両方に
    含めた場合は関係が作り直されます。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from loguru import logger

from .exceptions import ConstraintViolationError
from .normalize import coerce_int, normalize_tag_name, split_tag_names
from .store import TagStore


@dataclass
class SyncResult:
    """同期処理の結果（ステップごとの件数）.

    Attributes:
        publications: 処理した出版物ID（入力順）
        relations_deleted: 削除した関係の数
        tags_created: 新規作成したタグの数
        relations_created: 新規作成した関係の数
        relations_existing: 既に存在したため作成しなかった関係の数
        skipped_entries: 正規化後に空になったためスキップした入力要素
        conflicts_resolved: UNIQUE 制約違反を「既存」として解決した回数
    """

    publications: list[int] = field(default_factory=list)
    relations_deleted: int = 0
    tags_created: int = 0
    relations_created: int = 0
    relations_existing: int = 0
    skipped_entries: list[str] = field(default_factory=list)
    conflicts_resolved: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.relations_deleted or self.tags_created or self.relations_created)


def _skipped_entries(new_tags: str | None) -> list[str]:
    if not new_tags:
        return []
    return [part for part in str(new_tags).split(",") if not normalize_tag_name(part)]


def _resolve_tag_id(store: TagStore, name: str, result: SyncResult) -> int:
    """タグ名を tag_id に解決する（無ければ作成）."""
    tag = store.find_tag_by_name(name)
    if tag is not None:
        return tag.tag_id

    try:
        tag_id = store.create_tag(name)
    except ConstraintViolationError:
        # 検索と作成の間に別の書き込みが同名タグを作成した
        tag = store.find_tag_by_name(name)
        if tag is None:
            raise
        result.conflicts_resolved += 1
        logger.warning(f"Tag {name!r} was created concurrently; using existing tag_id={tag.tag_id}")
        return tag.tag_id

    result.tags_created += 1
    return tag_id


def _ensure_relation(store: TagStore, pub_id: int, tag_id: int, result: SyncResult) -> None:
    if store.relation_exists(pub_id, tag_id):
        result.relations_existing += 1
        return

    try:
        store.create_relation(pub_id, tag_id)
    except ConstraintViolationError:
        if not store.relation_exists(pub_id, tag_id):
            raise
        result.conflicts_resolved += 1
        logger.warning(f"Relation pub_id={pub_id}, tag_id={tag_id} was created concurrently")
        return

    result.relations_created += 1


def change_tag_relations(
    store: TagStore,
    publications: Iterable[object],
    new_tags: str | None,
    delete: Iterable[object] = (),
) -> SyncResult:
    """複数出版物のタグ関係を同期する.

    Args:
        store: タグストア
        publications: 出版物IDのシーケンス（整数に変換できない値は 0 になる）
        new_tags: 追加するタグ名（カンマ区切り）。空要素はスキップ
        delete: 関係を削除するタグIDのシーケンス（全出版物に適用）

    Returns:
        SyncResult

    Raises:
        StoreUnavailableError: ストアの I/O 失敗（全体がロールバックされる）

    Examples:
        >>> result = change_tag_relations(store, [5], "php, sql", delete=[7])  # doctest: +SKIP
        >>> result.relations_created  # doctest: +SKIP
        2
    """
    pub_ids = [coerce_int(p) for p in publications]
    delete_ids = [coerce_int(d) for d in delete]
    names = split_tag_names(new_tags)

    result = SyncResult(publications=pub_ids, skipped_entries=_skipped_entries(new_tags))
    if result.skipped_entries:
        logger.warning(f"Skipped {len(result.skipped_entries)} empty tag entries in {new_tags!r}")

    with store.transaction():
        for pub_id in pub_ids:
            # 1) 削除（tag_id 指定）
            for tag_id in delete_ids:
                result.relations_deleted += store.delete_relation_by_pub_and_tag(pub_id, tag_id)

            # 2) 追加（タグが無ければ作成、関係が無ければ作成）
            for name in names:
                tag_id = _resolve_tag_id(store, name, result)
                _ensure_relation(store, pub_id, tag_id, result)

    logger.info(
        f"Synchronized tag relations for {len(pub_ids)} publication(s): "
        f"deleted={result.relations_deleted}, tags_created={result.tags_created}, "
        f"relations_created={result.relations_created}, existing={result.relations_existing}"
    )
    return result
