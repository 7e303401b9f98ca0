"""Integer-cent arithmetic used by line totals and refunds."""

import pytest

from saleflow.money import apply_bps, prorate, average, format_cents


class TestApplyBps:
    def test_rounds_half_up(self):
        # 16% of 2.03 = 0.3248 -> 0.32, 16% of 2.05 = 0.328 -> 0.33
        assert apply_bps(203, 1600) == 32
        assert apply_bps(205, 1600) == 33
        # exact half rounds away from zero
        assert apply_bps(5, 1000) == 1

    def test_zero_rate(self):
        assert apply_bps(12345, 0) == 0


class TestProrate:
    def test_partial_shares_sum_to_total(self):
        total, qty = 1000, 3
        shares = [prorate(total, k, qty) - prorate(total, k - 1, qty) for k in range(1, qty + 1)]
        assert shares == [333, 334, 333]
        assert sum(shares) == total

    def test_whole_is_exact(self):
        assert prorate(999, 7, 7) == 999

    def test_zero_part(self):
        assert prorate(999, 0, 7) == 0


def test_average_handles_zero_count():
    assert average(1000, 0) == 0
    assert average(1001, 2) == 501


@pytest.mark.parametrize("cents,expected", [(450, "4.50"), (5, "0.05"), (-5, "-0.05"), (None, "0.00")])
def test_format_cents(cents, expected):
    assert format_cents(cents) == expected
