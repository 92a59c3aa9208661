"""条件付きタグ一覧.

TagQuery（一覧オプション）を Predicate にコンパイルし、TagStore で実行します。
"""

from __future__ import annotations

from dataclasses import dataclass

from .criteria import Predicate, compile_criteria, exclusion, membership, search
from .models import TagRow
from .store import TagStore, order_keyword


@dataclass(frozen=True)
class TagQuery:
    """タグ一覧のオプション.

    Attributes:
        pub_ids: 出版物ID（カンマ区切り文字列 or シーケンス）。いずれかに一致
        user_ids: ユーザーID。いずれかのユーザーがブックマークした出版物に限定
        exclude: 結果から除外するタグID
        search: タグ名の部分一致検索
        order: タグ名の並び順（"ASC" / "DESC"）
        limit: 最大件数（None は無制限）
        offset: 読み飛ばす件数
        group_by: True ならタグ名ごとに1行（使用中タグの一覧が欲しい場合）
    """

    pub_ids: object = ""
    user_ids: object = ""
    exclude: object = ""
    search: str = ""
    order: str = "ASC"
    limit: int | None = None
    offset: int = 0
    group_by: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "order", order_keyword(self.order))
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0: {self.limit}")
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0: {self.offset}")

    def predicate(self) -> Predicate:
        return compile_criteria(
            [
                membership("pub_id", self.pub_ids),
                membership("user_id", self.user_ids),
                search("name", self.search),
                exclusion("tag_id", self.exclude),
            ]
        )


def get_tags(store: TagStore, query: TagQuery | None = None) -> list[TagRow]:
    """TagQuery に一致する使用中タグを返す."""
    query = query or TagQuery()
    return store.query_tags(
        query.predicate(),
        order=query.order,
        limit=query.limit,
        offset=query.offset,
        group_by=query.group_by,
    )


def count_tags(store: TagStore, query: TagQuery | None = None) -> int:
    """get_tags() が limit/offset なしで返す件数."""
    query = query or TagQuery()
    return store.count_tags(query.predicate(), group_by=query.group_by)
