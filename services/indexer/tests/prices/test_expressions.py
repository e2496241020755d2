from decimal import Decimal

import pytest

from services.indexer.src.indexer.prices.expressions import (
    ExpressionError,
    evaluate_expression,
    to_postfix,
    tokenize,
)


class TestTokenize:

    def test_names_numbers_and_operators(self):
        assert tokenize("underlyingUSDOracle/redemptionRelatedOracle0-1") == [
            "underlyingUSDOracle", "/", "redemptionRelatedOracle0", "-", "1",
        ]

    def test_postfix(self):
        assert to_postfix(tokenize("(a - b) / c")) == ["a", "b", "-", "c", "/"]


class TestEvaluateExpression:

    def test_relative_deviation(self):
        result = evaluate_expression(
            "(colUSDOracle - colUSDPriceFeed) / colUSDPriceFeed",
            {"colUSDOracle": "110", "colUSDPriceFeed": "100"},
        )
        assert result == Decimal("0.1")

    def test_precedence(self):
        assert evaluate_expression("1 + 2 * 3", {}) == Decimal(7)

    def test_left_associative(self):
        assert evaluate_expression("8 - 4 - 2", {}) == Decimal(2)

    def test_decimal_literals(self):
        assert evaluate_expression("a * 0.5", {"a": "3"}) == Decimal("1.5")

    def test_null_variable_yields_none(self):
        assert evaluate_expression("a - b", {"a": "1", "b": None}) is None

    def test_division_by_zero_yields_none(self):
        assert evaluate_expression("a / b", {"a": "1", "b": "0"}) is None

    def test_unknown_variable(self):
        with pytest.raises(ExpressionError):
            evaluate_expression("a - missing", {"a": "1"})

    def test_non_numeric_variable(self):
        with pytest.raises(ExpressionError):
            evaluate_expression("a + 1", {"a": "n/a"})

    @pytest.mark.parametrize("formula", ["", "(1 + 2", "1 + 2)", "1 +", "1 2"])
    def test_malformed(self, formula):
        with pytest.raises(ExpressionError):
            evaluate_expression(formula, {})
