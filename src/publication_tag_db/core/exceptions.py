"""Tag store exceptions.

タグストアのカスタム例外クラスを定義します。

削除対象が存在しない場合は例外ではなく no-op（戻り値 False / 0）として扱います。
"""


class TagStoreError(Exception):
    """タグストア例外の基底クラス."""


class InvalidTagNameError(TagStoreError, ValueError):
    """正規化後に空になったタグ名で作成/更新しようとした場合の例外.

    Attributes:
        raw_name: 呼び出し側が渡した元の名前
    """

    def __init__(self, raw_name: str) -> None:
        self.raw_name = raw_name
        super().__init__(f"Tag name is empty after normalization: {raw_name!r}")


class ConstraintViolationError(TagStoreError):
    """UNIQUE 制約違反（タグ名・出版物タグ関係の重複作成）.

    同時実行の「検索 → 作成」競合で発生しうるため、呼び出し側は
    「既に存在する」とみなして既存行を再取得します。

    Attributes:
        table: 制約違反が発生したテーブル名
        key: 重複したキー
    """

    def __init__(self, table: str, key: tuple[object, ...]) -> None:
        self.table = table
        self.key = key
        super().__init__(f"Duplicate row rejected by {table}: {key}")


class StoreUnavailableError(TagStoreError):
    """ストアの I/O 失敗（sqlite3.Error）.

    呼び出し単位で致命的なエラーとして伝播します。部分的な成功結果は返しません。
    """
