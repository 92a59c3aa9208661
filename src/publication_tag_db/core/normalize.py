"""入力値の正規化（タグ名・IDリスト）.

呼び出し側から渡される生の入力（カンマ区切り文字列、フォームのID配列など）を
ストアで扱う値に変換するための関数群です。

設計方針:
    - タグ名は trim → HTML エスケープした値を TAGS.name として保存する
    - 同期処理（sync）の ID は「壊れた値は 0」に寄せる（拒否しない）
    - 検索条件（criteria）の ID は「壊れた値は落とす」（クエリ全体は壊さない）
"""

from __future__ import annotations

import html
import math
import re
from collections.abc import Iterable

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def normalize_tag_name(raw: str) -> str:
    """入力タグ名を TAGS.name に変換する.

    Examples:
        >>> normalize_tag_name("  php ")
        'php'
        >>> normalize_tag_name("C&A")
        'C&amp;A'
        >>> normalize_tag_name("   ")
        ''
    """
    s = str(raw).strip()
    if not s:
        return ""
    return html.escape(s, quote=True)


def split_tag_names(text: str | None) -> list[str]:
    """カンマ区切りのタグ文字列を正規化済みタグ名のリストに分解する.

    空要素（trim後に空）は除外する。重複と順序はそのまま保持する
    （同名タグの2回目は同期処理側で既存として解決される）。
    """
    if not text:
        return []
    names: list[str] = []
    for part in str(text).split(","):
        name = normalize_tag_name(part)
        if name:
            names.append(name)
    return names


def safe_int(value: object) -> int | None:
    """厳密な整数変換。変換できない値は None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def coerce_int(value: object) -> int:
    """緩い整数変換（失敗時は 0）.

    先頭の整数部分だけを読む（"12abc" → 12, "abc" → 0, "3.7" → 3）。
    """
    strict = safe_int(value)
    if strict is not None:
        return strict
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        m = _LEADING_INT.match(value)
        if m:
            return int(m.group(1))
    return 0


def _iter_raw_values(value: object) -> Iterable[object]:
    if value is None:
        return []
    if isinstance(value, str | bytes):
        text = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
        return text.split(",")
    if isinstance(value, Iterable):
        return value
    return [value]


def parse_id_list(value: object) -> list[int]:
    """カンマ区切り文字列/シーケンスから整数IDリストを作る.

    空要素・整数に変換できない要素は落とす。
    """
    out: list[int] = []
    for v in _iter_raw_values(value):
        if isinstance(v, str) and not v.strip():
            continue
        parsed = safe_int(v)
        if parsed is not None:
            out.append(parsed)
    return out


def parse_text_list(value: object) -> list[str]:
    """カンマ区切り文字列/シーケンスから trim 済み文字列リストを作る（空要素は落とす）."""
    out: list[str] = []
    for v in _iter_raw_values(value):
        if v is None:
            continue
        s = str(v).strip()
        if s:
            out.append(s)
    return out
