import hashlib

import pytest

from services.transaction.app.models import (
    OrderLine,
    PaymentStatus,
    compute_totals,
    map_midtrans_status,
    transition_allowed,
)
from services.transaction.app.payment import signature_for, verify_signature


class TestTotals:
    def test_single_line(self):
        totals = compute_totals([OrderLine(product_id=1, quantity=2, price=4000)])
        assert (totals.sub_total, totals.tax_total, totals.grand_total) == (8000, 880, 8880)

    def test_tax_is_floored(self):
        # 11% of 1001 is 110.11
        totals = compute_totals([OrderLine(product_id=1, quantity=1, price=1001)])
        assert (totals.tax_total, totals.grand_total) == (110, 1111)

    def test_several_lines(self):
        totals = compute_totals([
            OrderLine(product_id=1, quantity=3, price=15000),
            OrderLine(product_id=2, quantity=1, price=65000),
        ])
        assert totals.sub_total == 110000
        assert totals.tax_total == 12100


class TestPaymentStatus:
    @pytest.mark.parametrize(
        "provider, expected",
        [
            ("capture", PaymentStatus.SUCCESS),
            ("settlement", PaymentStatus.SUCCESS),
            ("pending", PaymentStatus.PENDING),
            ("deny", PaymentStatus.FAILED),
            ("cancel", PaymentStatus.CANCEL),
            ("expire", PaymentStatus.EXPIRED),
            ("refund", PaymentStatus.FAILED),
            ("", PaymentStatus.FAILED),
        ],
    )
    def test_provider_vocabulary(self, provider, expected):
        assert map_midtrans_status(provider) is expected

    def test_pending_may_move_anywhere(self):
        assert all(transition_allowed(PaymentStatus.PENDING, s) for s in PaymentStatus)

    def test_final_status_only_repeats(self):
        assert transition_allowed(PaymentStatus.SUCCESS, PaymentStatus.SUCCESS)
        assert not transition_allowed(PaymentStatus.SUCCESS, PaymentStatus.EXPIRED)
        assert not transition_allowed(PaymentStatus.EXPIRED, PaymentStatus.PENDING)


class TestSignature:
    def test_matches_provider_formula(self):
        expected = hashlib.sha512(b"ORDER_1" + b"200" + b"8880.00" + b"key").hexdigest()
        assert signature_for("ORDER_1", "200", "8880.00", "key") == expected
        assert verify_signature("ORDER_1", "200", "8880.00", "key", expected)
        assert not verify_signature("ORDER_1", "200", "8880.00", "other", expected)
        assert not verify_signature("ORDER_1", "200", "8880.00", "key", "")
