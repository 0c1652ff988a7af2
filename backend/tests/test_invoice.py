"""
Invoice arithmetic tests: payment status, return status and line totals.
"""

import pytest

from retailpos.services.invoice_service import (
    compute_totals,
    line_totals,
    payment_status,
    return_status,
)


class TestPaymentStatus:

    @pytest.mark.parametrize(
        "paid,net,expected",
        [
            (0, 100, "unpaid"),
            (-5, 100, "unpaid"),
            (0.01, 100, "partial"),
            (99.99, 100, "partial"),
            (100, 100, "paid"),
            (150, 100, "paid"),
            (0, 0, "unpaid"),
        ],
    )
    def test_boundaries(self, paid, net, expected):
        assert payment_status(paid, net) == expected

    def test_rounding_to_cents(self):
        assert payment_status(99.999, 100) == "paid"
        assert payment_status(None, 10) == "unpaid"

    @pytest.mark.parametrize("paid", [0, 40, 100])
    def test_recomputation_is_stable(self, paid):
        first = payment_status(paid, 100)
        assert all(payment_status(paid, 100) == first for _ in range(3))


class TestReturnStatus:

    def test_all_lines_back_is_returned_even_below_net(self):
        # Line values exclude tax, so the refund can stay below net_amount
        assert return_status(True, 20.0, 22.0) == "returned"

    def test_amount_reaching_net_is_returned(self):
        assert return_status(False, 450.0, 450.0) == "returned"

    def test_neither_criterion_is_partial(self):
        assert return_status(False, 150.0, 450.0) == "partially_returned"


class TestTotals:

    def test_line_discount_then_tax(self):
        line = line_totals(2, 50.0, discount_percent=10, tax_percent=5)

        assert line.subtotal == 100.0
        assert line.discount == 10.0
        assert line.tax == 4.5
        assert line.total == 94.5

    def test_invoice_level_amounts_added_to_lines(self):
        lines = [line_totals(2, 10.0, tax_percent=10), line_totals(1, 5.0)]

        totals = compute_totals(lines, discount_amount=3, tax_amount=1)

        assert totals.total_amount == 25.0
        assert totals.discount_amount == 3.0
        assert totals.tax_amount == 3.0
        assert totals.net_amount == 25.0
