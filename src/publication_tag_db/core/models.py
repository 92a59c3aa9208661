"""タグDBの行モデル."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Tag:
    tag_id: int
    name: str


@dataclass(frozen=True)
class Relation:
    """出版物とタグの多対多リンク（RELATIONS の1行）."""

    relation_id: int
    pub_id: int
    tag_id: int


@dataclass(frozen=True)
class Bookmark:
    bookmark_id: int
    pub_id: int
    user_id: int


@dataclass(frozen=True)
class TagRow:
    """タグ一覧の1行.

    group_by 指定時は pub_id / relation_id を持たない（None）。
    """

    name: str
    tag_id: int
    pub_id: int | None
    relation_id: int | None


@dataclass(frozen=True)
class TagUsage:
    name: str
    tag_id: int
    count: int
