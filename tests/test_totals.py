import unittest
from decimal import Decimal

from quotedesk.negotiation.draft import DraftItem
from quotedesk.negotiation.models import QuoteItem
from quotedesk.negotiation.totals import compute_total, line_subtotal, totals_consistent


class TotalsEngineTest(unittest.TestCase):
    def test_empty_items_total_zero(self) -> None:
        self.assertEqual(compute_total([]), Decimal("0.00"))

    def test_sums_quantity_times_price(self) -> None:
        items = [
            QuoteItem(id="a", quote_id="q", product_name="Bearing", quantity=2, price=Decimal("10.00")),
            QuoteItem(id="b", quote_id="q", product_name="Belt", quantity=1, price=Decimal("5.50")),
        ]
        self.assertEqual(compute_total(items), Decimal("25.50"))

    def test_accepts_dicts_and_draft_items(self) -> None:
        items = [
            {"quantity": 3, "price": "1.10"},
            DraftItem(id="x", product_name="Pin", quantity=1, price=Decimal("0.05")),
        ]
        self.assertEqual(compute_total(items), Decimal("3.35"))

    def test_result_has_two_decimal_places(self) -> None:
        total = compute_total([{"quantity": 3, "price": "0.1"}])
        self.assertEqual(total, Decimal("0.30"))
        self.assertEqual(str(total), "0.30")

    def test_decimal_arithmetic_is_exact(self) -> None:
        items = [{"quantity": 1, "price": "0.10"} for _ in range(10)]
        self.assertEqual(compute_total(items), Decimal("1.00"))

    def test_line_subtotal(self) -> None:
        self.assertEqual(line_subtotal({"quantity": 4, "price": "2.25"}), Decimal("9.00"))

    def test_malformed_shape_raises(self) -> None:
        with self.assertRaises(TypeError):
            compute_total([{"price": "1.00"}])
        with self.assertRaises(TypeError):
            compute_total([{"quantity": "2", "price": "1.00"}])
        with self.assertRaises(TypeError):
            compute_total([{"quantity": True, "price": "1.00"}])
        with self.assertRaises(ValueError):
            compute_total([{"quantity": 1, "price": "abc"}])

    def test_totals_consistent(self) -> None:
        items = [{"quantity": 2, "price": "10.00"}]
        self.assertTrue(totals_consistent("20.00", items))
        self.assertTrue(totals_consistent(Decimal("20"), items))
        self.assertFalse(totals_consistent("19.99", items))


if __name__ == "__main__":
    unittest.main()
