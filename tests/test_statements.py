"""Tests for statement splitting, classification and destructive checks."""

from __future__ import annotations

from sqldeck.drivers.base import classify_statement, limit_wrapper, plan_statement, strip_statement
from sqldeck.models import StatementKind
from sqldeck.statements import analyze_destructive, split_statements, statement_at_line


def test_split_on_semicolons_and_blank_lines() -> None:
    script = "SELECT 1;\nSELECT 2\n\n  \nSELECT\n  3;"

    statements = split_statements(script)

    assert [statement.text for statement in statements] == ["SELECT 1;", "SELECT 2", "SELECT\n  3;"]
    assert [(s.start_line, s.end_line) for s in statements] == [(0, 0), (1, 1), (4, 5)]


def test_split_ignores_separators_in_quotes_and_comments() -> None:
    script = "SELECT 'a;b', \"c;d\" -- trailing; comment\nFROM t;\n/* block;\n\n comment */ SELECT 2"

    statements = split_statements(script)

    assert len(statements) == 2
    assert statements[0].text.endswith("FROM t;")
    assert statements[1].text.endswith("SELECT 2")


def test_statement_at_line_picks_statement_under_cursor() -> None:
    statements = split_statements("SELECT 1;\n\nSELECT\n  *\nFROM t")

    assert statement_at_line(statements, 0).text == "SELECT 1;"
    assert statement_at_line(statements, 3).text == "SELECT\n  *\nFROM t"
    assert statement_at_line(statements, 1) is None


def test_classify_statement_kinds() -> None:
    assert classify_statement("select * from t")[0] is StatementKind.READ
    assert classify_statement("-- note\nPRAGMA table_info(t)")[0] is StatementKind.READ
    assert classify_statement("WITH x AS (SELECT 1) SELECT * FROM x")[0] is StatementKind.READ
    assert classify_statement("WITH x AS (SELECT 1) DELETE FROM t")[0] is StatementKind.WRITE
    assert classify_statement("INSERT INTO t VALUES (1)")[0] is StatementKind.WRITE
    assert classify_statement("CREATE TABLE t (id int)")[0] is StatementKind.DDL
    assert classify_statement("BEGIN")[0] is StatementKind.OTHER


def test_plan_wraps_selects_but_not_pragmas() -> None:
    select = plan_statement("SELECT * FROM t LIMIT 5;", 100)
    pragma = plan_statement("PRAGMA table_info(t)", 100)
    write = plan_statement("UPDATE t SET a = 1", 100)

    assert select.wrapped is True
    assert select.sql == limit_wrapper("SELECT * FROM t LIMIT 5", 100)
    assert select.sql.endswith("LIMIT 101")
    assert pragma.wrapped is False
    assert pragma.fetch_limit == 101
    assert write.fetch_limit is None
    assert strip_statement("  SELECT 1 ;; ") == "SELECT 1"


def test_analyze_destructive() -> None:
    delete = analyze_destructive("DELETE FROM shop.orders")
    drop = analyze_destructive("DROP TABLE IF EXISTS users", "postgres")
    truncate = analyze_destructive("TRUNCATE TABLE logs")

    assert delete.kind == "delete-no-where"
    assert delete.target == "shop.orders"
    assert drop.kind == "drop" and drop.target == "users" and drop.object_type == "TABLE"
    assert truncate.kind == "truncate" and truncate.target == "logs"
    assert analyze_destructive("DELETE FROM orders WHERE id = 4") is None
    assert analyze_destructive("SELECT * FROM orders") is None


def test_strip_statement_drops_trailing_comments() -> None:
    assert strip_statement("SELECT * FROM t -- all rows") == "SELECT * FROM t"
    assert strip_statement("SELECT * FROM t; -- done") == "SELECT * FROM t"
    assert strip_statement("SELECT '--' AS dashes /* note */") == "SELECT '--' AS dashes"
    assert strip_statement("SELECT 1 # hash comment", "mysql") == "SELECT 1"
    assert strip_statement("-- only a comment") == ""


def test_table_statement_is_wrapped() -> None:
    plan = plan_statement("TABLE orders", 10, "postgres")

    assert plan.wrapped is True
    assert plan.sql == "SELECT * FROM (\nTABLE orders\n) AS sqldeck_limited LIMIT 11"
