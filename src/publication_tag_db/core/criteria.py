"""検索条件（criteria）のコンパイル.

任意指定のフィルタ条件（出版物ID、ユーザーID、除外タグID、種別、名前検索）を
1つの合成可能な述語（Predicate）に変換します。

設計方針:
    - 条件は Clause（field, values, combinator, operator）の並びで表す
    - Clause 同士は AND で結合し、Clause 内の値は Clause 自身の combinator で結合する
    - 値は必ずパラメータバインドする（SQL文字列に埋め込まない）
    - 列名はホワイトリスト（FIELDS）からのみ引く
    - 壊れた値は Clause から落とすだけで、クエリ全体は壊さない
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from .normalize import normalize_tag_name, parse_id_list, parse_text_list


class Combinator(str, Enum):
    """Clause 内の値の結合方法."""

    AND = "AND"
    OR = "OR"


class Operator(str, Enum):
    """比較演算子。値（"=" など）でもメンバー名（"EQ" など）でも指定できる."""

    EQ = "="
    NEQ = "!="
    CONTAINS = "LIKE"  # 部分一致（ASCII は大文字小文字を区別しない）

    @classmethod
    def _missing_(cls, value: object) -> Operator | None:
        if isinstance(value, str):
            return cls.__members__.get(value.strip().upper())
        return None


class FieldKind(str, Enum):
    ID = "id"  # 整数に変換する
    TEXT = "text"  # trim のみ
    TAG_NAME = "tag_name"  # trim → HTML エスケープ（TAGS.name と同じ形）


@dataclass(frozen=True)
class FieldSpec:
    column: str
    kind: FieldKind
    alias: str  # ストアが JOIN を判断するためのテーブル別名


# 論理フィールド名 → 列（r: RELATIONS, t: TAGS, b: BOOKMARKS, p: PUBLICATIONS）
FIELDS: dict[str, FieldSpec] = {
    "pub_id": FieldSpec("r.pub_id", FieldKind.ID, "r"),
    "tag_id": FieldSpec("r.tag_id", FieldKind.ID, "r"),
    "user_id": FieldSpec("b.user_id", FieldKind.ID, "b"),
    "type": FieldSpec("p.type", FieldKind.TEXT, "p"),
    "name": FieldSpec("t.name", FieldKind.TAG_NAME, "t"),
}

_LIKE_ESCAPE = "\\"


def _escape_like(text: str) -> str:
    return (
        text.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


def _dedupe(values: Iterable[object]) -> tuple[object, ...]:
    seen: set[object] = set()
    out: list[object] = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return tuple(out)


def _search_terms(raw: object) -> list[object]:
    """部分一致の検索語を取り出す（文字列は分割せず1語、スカラーも1語）."""
    if raw is None:
        return []
    if isinstance(raw, bytes):
        return [raw.decode("utf-8", errors="replace")]
    if isinstance(raw, str) or not isinstance(raw, Iterable):
        return [raw]
    return [t for t in raw if t is not None]


def _normalize_text(field_spec: FieldSpec, text: str) -> str:
    if field_spec.kind is FieldKind.TAG_NAME:
        return normalize_tag_name(text)
    return text.strip()


@dataclass(frozen=True)
class Clause:
    """フィルタ条件の1単位.

    values には生の入力（カンマ区切り文字列 or シーケンス）を渡してよい。
    生成時に正規化され、正規化後の値の tuple に置き換わる。

    - ID フィールド: 整数に変換（変換できない値・空要素は落とす）
    - TEXT フィールド: trim（空要素は落とす）
    - TAG_NAME フィールド: trim → HTML エスケープ（保存済みの TAGS.name と比較できる形）
    - CONTAINS: 入力全体（文字列以外のスカラーも）を1つの検索語として扱う
    """

    field: str
    values: object = ()
    combinator: Combinator = Combinator.OR
    operator: Operator = Operator.EQ

    def __post_init__(self) -> None:
        field_spec = FIELDS.get(self.field)
        if field_spec is None:
            raise ValueError(f"Unknown criteria field: {self.field!r} (valid: {sorted(FIELDS)})")
        object.__setattr__(self, "combinator", Combinator(self.combinator))
        object.__setattr__(self, "operator", Operator(self.operator))
        object.__setattr__(self, "values", self._normalize(field_spec, self.values))

    def _normalize(self, field_spec: FieldSpec, raw: object) -> tuple[object, ...]:
        if self.operator is Operator.CONTAINS:
            terms = [_normalize_text(field_spec, str(t)) for t in _search_terms(raw)]
            return _dedupe(t for t in terms if t)

        if field_spec.kind is not FieldKind.ID:
            terms = [_normalize_text(field_spec, t) for t in parse_text_list(raw)]
            return _dedupe(t for t in terms if t)

        ids = parse_id_list(raw)
        candidates = parse_text_list(raw)
        if len(ids) < len(candidates):
            logger.warning(
                f"Dropped {len(candidates) - len(ids)} malformed value(s) from criteria field "
                f"{self.field!r}: {candidates}"
            )
        return _dedupe(ids)

    @property
    def is_empty(self) -> bool:
        return not self.values


@dataclass(frozen=True)
class Predicate:
    """コンパイル済み述語（WHERE 句の本体 + バインド値）.

    sql が空なら全件一致（no-op）。
    """

    sql: str = ""
    params: tuple[object, ...] = ()
    aliases: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_match_all(self) -> bool:
        return not self.sql

    def where(self) -> str:
        return f" WHERE {self.sql}" if self.sql else ""

    def uses(self, alias: str) -> bool:
        """述語がテーブル別名 alias の列を参照しているか."""
        return alias in self.aliases

    def and_(self, other: Predicate) -> Predicate:
        if other.is_match_all:
            return self
        if self.is_match_all:
            return other
        return Predicate(
            sql=f"{self.sql} AND {other.sql}",
            params=self.params + other.params,
            aliases=self.aliases | other.aliases,
        )


MATCH_ALL = Predicate()


def membership(field_name: str, raw: object) -> Clause:
    """field が値のいずれかに一致（field = v1 OR field = v2 ...）."""
    return Clause(field_name, raw, Combinator.OR, Operator.EQ)


def exclusion(field_name: str, raw: object) -> Clause:
    """field が値のどれにも一致しない（field != v1 AND field != v2 ...）."""
    return Clause(field_name, raw, Combinator.AND, Operator.NEQ)


def search(field_name: str, text: str | None) -> Clause:
    """field が text を部分一致で含む."""
    return Clause(field_name, text or "", Combinator.OR, Operator.CONTAINS)


def _compile_clause(clause: Clause) -> tuple[str, list[object]]:
    field_spec = FIELDS[clause.field]
    parts: list[str] = []
    params: list[object] = []
    for value in clause.values:  # type: ignore[union-attr]
        if clause.operator is Operator.CONTAINS:
            parts.append(f"{field_spec.column} LIKE ? ESCAPE '{_LIKE_ESCAPE}'")
            params.append(f"%{_escape_like(str(value))}%")
        else:
            parts.append(f"{field_spec.column} {clause.operator.value} ?")
            params.append(value)
    return f" {clause.combinator.value} ".join(parts), params


def compile_criteria(clauses: Iterable[Clause]) -> Predicate:
    """Clause の並びを1つの Predicate にコンパイルする.

    Args:
        clauses: フィルタ条件（順序はそのまま SQL の順序になる）

    Returns:
        空の Clause を除いた全 Clause の AND。全て空なら MATCH_ALL。

    Examples:
        >>> p = compile_criteria([membership("pub_id", "1,2"), exclusion("tag_id", "7")])
        >>> p.sql
        '(r.pub_id = ? OR r.pub_id = ?) AND (r.tag_id != ?)'
        >>> p.params
        (1, 2, 7)
    """
    fragments: list[str] = []
    params: list[object] = []
    aliases: set[str] = set()
    for clause in clauses:
        if clause.is_empty:
            continue
        sql, values = _compile_clause(clause)
        fragments.append(f"({sql})")
        params.extend(values)
        aliases.add(FIELDS[clause.field].alias)

    if not fragments:
        return MATCH_ALL

    return Predicate(sql=" AND ".join(fragments), params=tuple(params), aliases=frozenset(aliases))
