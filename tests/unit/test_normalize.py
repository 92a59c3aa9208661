"""Unit tests for normalize utilities."""

from publication_tag_db.core.normalize import (
    coerce_int,
    normalize_tag_name,
    parse_id_list,
    parse_text_list,
    safe_int,
    split_tag_names,
)


class TestNormalizeTagName:
    def test_strip_whitespace(self) -> None:
        assert normalize_tag_name("  php  ") == "php"
        assert normalize_tag_name(" machine learning ") == "machine learning"

    def test_html_escape(self) -> None:
        assert normalize_tag_name("C&A") == "C&amp;A"
        assert normalize_tag_name("<b>") == "&lt;b&gt;"
        assert normalize_tag_name('say "hi"') == "say &quot;hi&quot;"

    def test_case_is_preserved(self) -> None:
        assert normalize_tag_name("PHP") == "PHP"

    def test_blank(self) -> None:
        assert normalize_tag_name("") == ""
        assert normalize_tag_name("   ") == ""


class TestSplitTagNames:
    def test_basic(self) -> None:
        assert split_tag_names("php, sql ,go") == ["php", "sql", "go"]

    def test_skips_empty_entries(self) -> None:
        assert split_tag_names("php,, ,sql,") == ["php", "sql"]

    def test_keeps_duplicates_in_order(self) -> None:
        assert split_tag_names("php,php") == ["php", "php"]

    def test_none_and_empty(self) -> None:
        assert split_tag_names(None) == []
        assert split_tag_names("") == []


class TestIntCoercion:
    def test_safe_int(self) -> None:
        assert safe_int("12") == 12
        assert safe_int(" 7 ") == 7
        assert safe_int(3.9) == 3
        assert safe_int(True) == 1
        assert safe_int("12abc") is None
        assert safe_int("abc") is None
        assert safe_int(None) is None
        assert safe_int(float("nan")) is None

    def test_coerce_int_zero_on_failure(self) -> None:
        assert coerce_int("abc") == 0
        assert coerce_int(None) == 0
        assert coerce_int("") == 0
        assert coerce_int(object()) == 0

    def test_coerce_int_reads_leading_digits(self) -> None:
        assert coerce_int("12abc") == 12
        assert coerce_int("3.7") == 3
        assert coerce_int("-4x") == -4
        assert coerce_int(b"42") == 42


class TestParseLists:
    def test_parse_id_list_from_string(self) -> None:
        assert parse_id_list("1, 2,abc,, 3") == [1, 2, 3]

    def test_parse_id_list_from_sequence(self) -> None:
        assert parse_id_list([1, "2", "x", None, 4.0]) == [1, 2, 4]

    def test_parse_id_list_scalar(self) -> None:
        assert parse_id_list(5) == [5]
        assert parse_id_list(None) == []

    def test_parse_text_list(self) -> None:
        assert parse_text_list(" article, book ,,") == ["article", "book"]
        assert parse_text_list(["a", " ", None, "b"]) == ["a", "b"]
