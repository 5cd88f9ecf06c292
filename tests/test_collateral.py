"""
Collateralization checker tests.

    approved  <=>  floor(reserve * 10^decimals) >= supply + requested
"""

import unittest
from decimal import Decimal

from securemint.collateral import (
    MAX_BASE_UNITS,
    check_collateralization,
    from_base_units,
    to_base_units,
    to_exact_base_units,
)
from securemint.errors import FailureCode, MalformedInstruction

UNITS = 10 ** 18


class TestCollateralizationScenarios(unittest.TestCase):

    def test_within_reserves_is_approved(self):
        decision = check_collateralization(
            Decimal("1000000"),
            current_supply=900000 * UNITS,
            requested_amount=50000 * UNITS
        )

        self.assertTrue(decision.approved)
        self.assertEqual(decision.projected_supply, 950000 * UNITS)
        self.assertIsNone(decision.deficit)
        self.assertIsNone(decision.deficit_amount)

    def test_exceeding_reserves_is_rejected_with_deficit(self):
        decision = check_collateralization(
            Decimal("1000000"),
            current_supply=900000 * UNITS,
            requested_amount=200000 * UNITS
        )

        self.assertFalse(decision.approved)
        self.assertEqual(decision.deficit, 100000 * UNITS)
        self.assertEqual(decision.deficit_amount, Decimal("100000"))

    def test_exactly_fully_collateralized_is_approved(self):
        decision = check_collateralization(Decimal("1000"), 400 * UNITS, 600 * UNITS)
        self.assertTrue(decision.approved)

    def test_one_base_unit_over_is_rejected(self):
        decision = check_collateralization(Decimal("1000"), 400 * UNITS, 600 * UNITS + 1)

        self.assertFalse(decision.approved)
        self.assertEqual(decision.deficit, 1)

    def test_reserve_is_truncated_not_rounded(self):
        # 0.99...9 (19 nines) floors to 999999999999999999 base units
        reserve = Decimal("0." + "9" * 19)

        decision = check_collateralization(reserve, 0, UNITS)

        self.assertFalse(decision.approved)
        self.assertEqual(decision.trusted_reserve, UNITS - 1)
        self.assertEqual(decision.deficit, 1)

    def test_other_precisions(self):
        decision = check_collateralization(Decimal("10.50"), 1000, 50, decimals=2)
        self.assertTrue(decision.approved)
        self.assertEqual(decision.trusted_reserve, 1050)

    def test_negative_inputs_rejected(self):
        with self.assertRaises(ValueError):
            check_collateralization(Decimal("1"), -1, 0)

    def test_to_dict(self):
        d = check_collateralization(Decimal("1000000"), 900000 * UNITS, 200000 * UNITS).to_dict()

        self.assertFalse(d["approved"])
        self.assertEqual(d["deficit"], str(100000 * UNITS))
        self.assertEqual(d["projected_supply"], str(1100000 * UNITS))


class TestUnitScaling(unittest.TestCase):

    def test_to_base_units_floors(self):
        self.assertEqual(to_base_units(Decimal("1.239"), 2), 123)

    def test_large_amounts_are_exact(self):
        big = Decimal("123456789012345678901234567890.123456789012345678")
        self.assertEqual(to_base_units(big, 18), 123456789012345678901234567890123456789012345678)

    def test_exact_conversion(self):
        self.assertEqual(to_exact_base_units(Decimal("50000"), 18), 50000 * UNITS)
        self.assertEqual(to_exact_base_units(Decimal("0.5"), 6), 500000)

    def test_exact_conversion_refuses_extra_precision(self):
        with self.assertRaises(MalformedInstruction) as ctx:
            to_exact_base_units(Decimal("0.001"), 2)
        self.assertEqual(ctx.exception.code, FailureCode.PRECISION_EXCEEDED)

    def test_exact_conversion_refuses_out_of_range_amounts(self):
        for raw in ("1e1000000", "1e70"):
            with self.subTest(raw=raw):
                with self.assertRaises(MalformedInstruction) as ctx:
                    to_exact_base_units(Decimal(raw), 18)
                self.assertEqual(ctx.exception.code, FailureCode.INVALID_FIELD)
                self.assertEqual(ctx.exception.field, "amount")

    def test_exact_conversion_accepts_largest_uint256(self):
        self.assertEqual(to_exact_base_units(Decimal(MAX_BASE_UNITS), 0), MAX_BASE_UNITS)
        with self.assertRaises(MalformedInstruction):
            to_exact_base_units(Decimal(MAX_BASE_UNITS + 1), 0)

    def test_from_base_units(self):
        self.assertEqual(from_base_units(150, 2), Decimal("1.50"))


if __name__ == "__main__":
    unittest.main()
