"""Unit tests for the record-store predicate parser and evaluator."""

from __future__ import annotations

import pytest

from dealer_mcp.data.filter_expr import (
    AllOf,
    AnyOf,
    Comparison,
    Field,
    FilterSyntaxError,
    Literal,
    compile_filter,
    parse,
    tokenize,
)


def _flat(record: dict, path: str):
    """Resolver for plain dict records: dotted paths walk nested dicts."""
    value = record
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(expression: str, record: dict) -> bool:
    return compile_filter(expression)(record, _flat)


class TestTokenize:
    def test_operators_and_literals(self):
        kinds = [t.kind for t in tokenize('a >= 10 && b ~ "x" || c = true')]
        assert kinds == [
            "ident", "op", "number", "and", "ident", "op", "string",
            "or", "ident", "op", "keyword", "eof",
        ]

    def test_string_escapes(self):
        tokens = tokenize(r'name = "say \"hi\""')
        assert tokens[2].value == 'say "hi"'
        assert tokens[2].position == 7

    def test_unexpected_character(self):
        with pytest.raises(FilterSyntaxError) as info:
            tokenize("a = #")
        assert info.value.details["position"] == 4
        assert info.value.code == "INVALID_FILTER"


class TestParse:
    def test_blank_matches_everything(self):
        assert parse("") is None
        assert parse("   ") is None

    def test_and_binds_tighter_than_or(self):
        node = parse("a = 1 || b = 2 && c = 3")
        assert isinstance(node, AnyOf)
        assert isinstance(node.items[1], AllOf)

    def test_parentheses(self):
        node = parse("(a = 1 || b = 2) && c = 3")
        assert isinstance(node, AllOf)
        assert isinstance(node.items[0], AnyOf)

    def test_comparison_shape(self):
        assert parse('model.name ~ "avanza"') == Comparison(
            Field("model.name"), "~", Literal("avanza")
        )

    def test_missing_operator(self):
        with pytest.raises(FilterSyntaxError):
            parse("a 1")

    def test_unclosed_paren(self):
        with pytest.raises(FilterSyntaxError):
            parse("(a = 1")

    def test_unterminated_string(self):
        with pytest.raises(FilterSyntaxError):
            parse('a = "open')


class TestEvaluate:
    def test_contains_is_case_insensitive(self):
        assert _matches('name ~ "AVA"', {"name": "Avanza"})
        assert not _matches('name !~ "ava"', {"name": "Avanza"})

    def test_numeric_comparisons(self):
        record = {"sell_price": 158_000_000}
        assert _matches("sell_price <= 200000000", record)
        assert not _matches("sell_price > 200000000", record)
        assert _matches("sell_price = 158000000", record)

    def test_booleans(self):
        assert _matches("is_sold = false", {"is_sold": False})
        assert not _matches("is_sold = true", {"is_sold": False})

    def test_null_equals_empty(self):
        assert _matches('note = null', {"note": ""})
        assert _matches('note = ""', {})

    def test_string_ids_compare_as_strings(self):
        assert not _matches('code = "007"', {"code": "7"})

    def test_dates_compare_lexically(self):
        record = {"date": "2025-02-03 13:00:00.000Z"}
        assert _matches('date >= "2025-02-01 00:00:00.000Z"', record)
        assert not _matches('date <= "2025-01-31 23:59:59.999Z"', record)

    def test_nested_paths(self):
        record = {"model": {"brand": {"name": "Toyota"}}}
        assert _matches('model.brand.name = "Toyota"', record)

    def test_list_values_match_any_element(self):
        record = {"images": ["front.jpg", "side.jpg"]}
        assert _matches('images ~ "side"', record)
        assert not _matches('images != "front.jpg"', record)

    def test_or_group(self):
        record = {"customer_name": "Budi", "id": "sale-1"}
        assert _matches('(customer_name ~ "sale" || id ~ "sale")', record)
