"""タグクラウド用の頻度集計.

- フィルタ（ユーザー、出版物種別、除外タグ）を Predicate にコンパイル
- 絞り込んだ RELATIONS をタグごとに集計（ヒストグラム）
- 最大/最小（distinct な出現数の最小）を算出
- 出現数の降順で上位 N 件を選び、N件目と同数のタグも含める（同率の取りこぼし防止）
- 表示用にタグ名順で返す
"""

from __future__ import annotations

from dataclasses import dataclass, field

import polars as pl
from loguru import logger

from .criteria import compile_criteria, exclusion, membership
from .store import TagStore

HISTOGRAM_SCHEMA = {"tag_id": pl.Int64, "name": pl.String, "count": pl.Int64}


@dataclass(frozen=True)
class CloudOptions:
    """タグクラウドのオプション.

    Attributes:
        user: ユーザーID（カンマ区切り or シーケンス）。いずれかのブックマークに限定
        type: 出版物種別（カンマ区切り or シーケンス）
        exclude: 除外するタグID
        number_tags: 表示するタグ数（None は全件、0以下は0件）
        include_ties: N件目と同じ出現数のタグを追加で含めるか
    """

    user: object = ""
    type: object = ""
    exclude: object = ""
    number_tags: int | None = None
    include_ties: bool = True


@dataclass(frozen=True)
class CloudTag:
    name: str
    tag_id: int
    count: int


@dataclass(frozen=True)
class CloudInfo:
    max: int = 0
    min: int = 0


@dataclass(frozen=True)
class TagCloud:
    tags: list[CloudTag] = field(default_factory=list)
    info: CloudInfo = field(default_factory=CloudInfo)

    def as_dict(self) -> dict[str, object]:
        return {
            "tags": [{"tagPeak": t.count, "name": t.name, "tag_id": t.tag_id} for t in self.tags],
            "info": {"max": self.info.max, "min": self.info.min},
        }


def tag_histogram(frame: pl.DataFrame) -> pl.DataFrame:
    """(relation_id, tag_id, name) の DataFrame をタグごとの出現数に集計する.

    Returns:
        tag_id, name, count 列の DataFrame（順序は不定）
    """
    if frame.is_empty():
        return pl.DataFrame(schema=HISTOGRAM_SCHEMA)
    return (
        frame.group_by(["tag_id", "name"])
        .agg(pl.len().alias("count"))
        .select(
            pl.col("tag_id").cast(pl.Int64),
            pl.col("name").cast(pl.String),
            pl.col("count").cast(pl.Int64),
        )
    )


def build_cloud(
    histogram: pl.DataFrame,
    number_tags: int | None = None,
    *,
    include_ties: bool = True,
) -> TagCloud:
    """ヒストグラムからタグクラウドを作る.

    Args:
        histogram: tag_id, name, count 列の DataFrame
        number_tags: 上位何件を表示するか（None は全件、0以下は0件）
        include_ties: N件目と同じ出現数のタグも含めるか

    Returns:
        TagCloud（tags はタグ名順、info.max/min はヒストグラム全体の最大/最小出現数）

    Examples:
        >>> hist = pl.DataFrame({"tag_id": [1, 2, 3, 4], "name": ["A", "B", "C", "D"], "count": [5, 3, 3, 1]})
        >>> [t.name for t in build_cloud(hist, 2).tags]
        ['A', 'B', 'C']
        >>> build_cloud(hist, 2).info
        CloudInfo(max=5, min=1)
    """
    if histogram.is_empty():
        return TagCloud(tags=[], info=CloudInfo(max=0, min=0))

    distinct_counts = histogram["count"].unique()
    info = CloudInfo(max=int(distinct_counts.max()), min=int(distinct_counts.min()))

    # 同数は名前順で安定させる
    ranked = histogram.sort(["count", "name"], descending=[True, False])

    if number_tags is None:
        selected = ranked
    elif number_tags <= 0:
        selected = ranked.head(0)
    else:
        selected = ranked.head(number_tags)
        if include_ties and not selected.is_empty():
            boundary = selected["count"].min()
            selected = ranked.filter(pl.col("count") >= boundary)

    selected = selected.filter(pl.col("count") >= info.min).sort("name")

    tags = [
        CloudTag(name=row["name"], tag_id=int(row["tag_id"]), count=int(row["count"]))
        for row in selected.iter_rows(named=True)
    ]
    return TagCloud(tags=tags, info=info)


def get_tag_cloud(store: TagStore, options: CloudOptions | None = None) -> TagCloud:
    """フィルタ条件に従ってタグクラウドを計算する."""
    options = options or CloudOptions()
    predicate = compile_criteria(
        [
            membership("type", options.type),
            membership("user_id", options.user),
            exclusion("tag_id", options.exclude),
        ]
    )
    histogram = tag_histogram(store.relation_frame(predicate))
    cloud = build_cloud(histogram, options.number_tags, include_ties=options.include_ties)
    logger.debug(
        f"Tag cloud: {len(cloud.tags)}/{len(histogram)} tags selected "
        f"(max={cloud.info.max}, min={cloud.info.min}, number_tags={options.number_tags})"
    )
    return cloud
