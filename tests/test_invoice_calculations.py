"""Tests for invoice money arithmetic"""

from types import SimpleNamespace

import pytest

from portal.domain.invoices.calculations import (
    calculate_discount_cents,
    calculate_invoice_totals,
    cents_to_dollars,
    dollars_to_cents,
    format_cents,
    line_amount_cents,
    round_cents,
)


class TestRounding:
    def test_half_cents_round_away_from_zero(self):
        assert round_cents(2.5) == 3
        assert round_cents(-2.5) == -3
        assert round_cents("10.49") == 10

    def test_fractional_quantity(self):
        assert line_amount_cents(1.5, 999) == 1499
        assert line_amount_cents(3, 1000) == 3000

    def test_dollar_conversion(self):
        assert dollars_to_cents("19.99") == 1999
        assert dollars_to_cents(0.1) == 10
        assert dollars_to_cents(0.015) == 2
        assert cents_to_dollars(12345) == 123.45


class TestDiscounts:
    def test_percentage_is_basis_points_of_subtotal(self):
        assert calculate_discount_cents(12500, "percentage", 1000) == 1250

    def test_fixed_discount_is_capped_at_subtotal(self):
        assert calculate_discount_cents(1000, "fixed", 5000) == 1000

    def test_no_discount(self):
        assert calculate_discount_cents(1000, None, 500) == 0
        assert calculate_discount_cents(1000, "fixed", 0) == 0

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            calculate_discount_cents(1000, "coupon", 10)


class TestInvoiceTotals:
    def test_discount_then_tax(self):
        totals = calculate_invoice_totals(
            [{"quantity": 2, "unit_price_cents": 5000}, {"quantity": 1, "unit_price_cents": 2500}],
            tax_rate=825,
            discount_type="percentage",
            discount_value=1000,
        )
        assert totals == {
            "subtotal_cents": 12500,
            "discount_cents": 1250,
            "tax_cents": 928,
            "total_cents": 12178,
        }

    def test_accepts_line_item_objects(self):
        items = [SimpleNamespace(quantity=4, unit_price_cents=250)]
        assert calculate_invoice_totals(items)["total_cents"] == 1000

    def test_only_taxable_lines_are_taxed(self):
        totals = calculate_invoice_totals(
            [
                {"quantity": 2, "unit_price_cents": 5000},
                {"quantity": 1, "unit_price_cents": 2500, "taxable": False},
            ],
            tax_rate=1000,
            discount_type="percentage",
            discount_value=1000,
        )
        # 10% discount spread over both lines: 9000 of the 11250 discounted value is taxable
        assert totals["tax_cents"] == 900
        assert totals["total_cents"] == 12150

    def test_nothing_taxable(self):
        items = [SimpleNamespace(quantity=1, unit_price_cents=1000, taxable=False)]
        totals = calculate_invoice_totals(items, tax_rate=1000)
        assert totals["tax_cents"] == 0
        assert totals["total_cents"] == 1000

    def test_total_never_negative(self):
        totals = calculate_invoice_totals(
            [{"quantity": 1, "unit_price_cents": 1000}], tax_rate=1000, discount_type="fixed", discount_value=9999
        )
        assert totals["discount_cents"] == 1000
        assert totals["tax_cents"] == 0
        assert totals["total_cents"] == 0


class TestFormatting:
    def test_known_currencies(self):
        assert format_cents(123456) == "$1,234.56"
        assert format_cents(-500, "eur") == "-€5.00"

    def test_unknown_currency_uses_code(self):
        assert format_cents(100, "JPY") == "1.00 JPY"
