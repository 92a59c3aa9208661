"""出版物タグDBのコア処理群.

- 検索条件のコンパイル（criteria）
- タグ関係の一括同期（sync）
- タグクラウドの頻度集計（cloud）
"""

from .bookmarks import BookmarkStore
from .cloud import CloudOptions, TagCloud, get_tag_cloud
from .criteria import Clause, Combinator, Operator, Predicate, compile_criteria, exclusion, membership, search
from .listing import TagQuery, count_tags, get_tags
from .store import TagStore
from .sync import SyncResult, change_tag_relations

__all__ = [
    "BookmarkStore",
    "Clause",
    "CloudOptions",
    "Combinator",
    "Operator",
    "Predicate",
    "SyncResult",
    "TagCloud",
    "TagQuery",
    "TagStore",
    "change_tag_relations",
    "compile_criteria",
    "count_tags",
    "exclusion",
    "get_tag_cloud",
    "get_tags",
    "membership",
    "search",
]
