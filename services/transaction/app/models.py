"""
Transaction Service — order values and the payment-status state machine

    pending ──▶ success | failed | cancel | expired

Only the payment provider's callback moves an order between states; its
vocabulary is mapped onto ours by map_midtrans_status().
"""

from dataclasses import dataclass
from enum import Enum

CURRENCY = "IDR"
PAYMENT_METHOD_QRIS = "qris"
TAX_PERCENT = 11


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCEL = "cancel"


FINAL_STATUSES = frozenset({
    PaymentStatus.SUCCESS,
    PaymentStatus.FAILED,
    PaymentStatus.EXPIRED,
    PaymentStatus.CANCEL,
})

_MIDTRANS_STATUS = {
    "capture": PaymentStatus.SUCCESS,
    "settlement": PaymentStatus.SUCCESS,
    "pending": PaymentStatus.PENDING,
    "deny": PaymentStatus.FAILED,
    "cancel": PaymentStatus.CANCEL,
    "expire": PaymentStatus.EXPIRED,
}


def map_midtrans_status(provider_status: str) -> PaymentStatus:
    return _MIDTRANS_STATUS.get(provider_status, PaymentStatus.FAILED)


def transition_allowed(current: PaymentStatus, new: PaymentStatus) -> bool:
    """Leaving pending is always allowed; a final status only accepts itself again."""
    return current == PaymentStatus.PENDING or current == new


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int
    price: int

    @property
    def sub_total(self) -> int:
        return self.quantity * self.price


@dataclass(frozen=True)
class Totals:
    sub_total: int
    tax_total: int
    grand_total: int


def compute_totals(lines: list[OrderLine]) -> Totals:
    sub_total = sum(line.sub_total for line in lines)
    # integer floor of sub_total * 0.11, free of float rounding
    tax_total = sub_total * TAX_PERCENT // 100
    return Totals(sub_total=sub_total, tax_total=tax_total, grand_total=sub_total + tax_total)
