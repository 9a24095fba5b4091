import pytest

from superset_py._sql import protect_jinja, replace_sql_text, restore_jinja
from superset_py.errors import ParseError


def test_protect_and_restore_round_trip_all_block_kinds() -> None:
    sql = (
        "SELECT * FROM t {# note #}\n"
        "WHERE ds = '{{ ds }}'\n"
        "{% if x %}AND a = 1{% endif %}"
    )
    protected, blocks = protect_jinja(sql)
    assert "{{" not in protected and "{%" not in protected and "{#" not in protected
    assert blocks == ["{# note #}", "{{ ds }}", "{% if x %}", "{% endif %}"]
    assert restore_jinja(protected, blocks) == sql


def test_replace_rewrites_every_occurrence() -> None:
    new_sql, count = replace_sql_text("SELECT foo FROM t WHERE foo>1", "foo", "bar")
    assert new_sql == "SELECT bar FROM t WHERE bar>1"
    assert count == 2


def test_replace_leaves_jinja_untouched() -> None:
    sql = "SELECT foo FROM t WHERE d = '{{ foo }}' {% if foo %}AND foo = 1{% endif %}"
    new_sql, count = replace_sql_text(sql, "foo", "bar")
    assert new_sql == (
        "SELECT bar FROM t WHERE d = '{{ foo }}' {% if foo %}AND bar = 1{% endif %}"
    )
    assert count == 2


def test_replace_is_case_sensitive_and_literal() -> None:
    sql = "SELECT Foo, f.o FROM t"
    assert replace_sql_text(sql, "foo", "x") == (sql, 0)
    assert replace_sql_text(sql, "f.o", "g.o") == ("SELECT Foo, g.o FROM t", 1)


def test_no_match_returns_input_unchanged() -> None:
    sql = "SELECT 1"
    assert replace_sql_text(sql, "missing", "x") == (sql, 0)


def test_unterminated_jinja_is_a_parse_error() -> None:
    with pytest.raises(ParseError, match="unterminated Jinja"):
        replace_sql_text("SELECT {{ foo FROM t", "foo", "bar")


def test_lenient_protect_passes_dangling_opener_through() -> None:
    protected, blocks = protect_jinja("SELECT {{ foo")
    assert protected == "SELECT {{ foo"
    assert blocks == []


def test_empty_find_is_rejected() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        replace_sql_text("SELECT 1", "", "x")
