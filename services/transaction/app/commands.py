"""
Transaction Service — commands (write side)

insert_transaction() writes the order and its line items but does not
commit: the orchestrator stages the stock event in the same transaction and
commits once. update_payment_status() is the only mutation after creation.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from services.common.errors import NotFound

from .models import (
    CURRENCY,
    PAYMENT_METHOD_QRIS,
    OrderLine,
    PaymentStatus,
    Totals,
    map_midtrans_status,
    transition_allowed,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Customer:
    name: str
    phone: str
    email: str
    address: str


async def insert_transaction(
    session: AsyncSession,
    order_id: str,
    customer: Customer,
    merchant_id: int,
    lines: list[OrderLine],
    totals: Totals,
    notes: str = "",
) -> int:
    result = await session.execute(
        text("""
            INSERT INTO transactions
                (name, phone, email, address, sub_total, tax_total, grand_total,
                 merchant_id, payment_status, payment_method, order_id, notes, currency,
                 created_at, updated_at)
            VALUES
                (:name, :phone, :email, :address, :sub_total, :tax_total, :grand_total,
                 :merchant_id, :payment_status, :payment_method, :order_id, :notes, :currency,
                 CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            RETURNING id
        """),
        {
            "name": customer.name,
            "phone": customer.phone,
            "email": customer.email,
            "address": customer.address,
            "sub_total": totals.sub_total,
            "tax_total": totals.tax_total,
            "grand_total": totals.grand_total,
            "merchant_id": merchant_id,
            "payment_status": PaymentStatus.PENDING.value,
            "payment_method": PAYMENT_METHOD_QRIS,
            "order_id": order_id,
            "notes": notes,
            "currency": CURRENCY,
        },
    )
    transaction_id = result.scalar_one()

    for line in lines:
        await session.execute(
            text("""
                INSERT INTO transaction_products
                    (transaction_id, product_id, quantity, price, sub_total, created_at, updated_at)
                VALUES
                    (:transaction_id, :product_id, :quantity, :price, :sub_total,
                     CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """),
            {
                "transaction_id": transaction_id,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "price": line.price,
                "sub_total": line.sub_total,
            },
        )
    return transaction_id


async def set_payment_token(session: AsyncSession, transaction_id: int, token: str) -> None:
    await session.execute(
        text("""
            UPDATE transactions
            SET payment_token = :token, updated_at = CURRENT_TIMESTAMP
            WHERE id = :id
        """),
        {"id": transaction_id, "token": token},
    )
    await session.commit()


async def update_payment_status(
    session: AsyncSession,
    order_id: str,
    provider_status: str,
    payment_type: str,
    provider_transaction_id: str,
    fraud_status: str,
) -> tuple[PaymentStatus, bool]:
    """Apply a provider notification; returns (resulting status, whether it was applied)."""
    result = await session.execute(
        text("SELECT id, payment_status FROM transactions WHERE order_id = :order_id"),
        {"order_id": order_id},
    )
    row = result.fetchone()
    if row is None:
        raise NotFound("Transaction not found")

    current = PaymentStatus(row.payment_status)
    new = map_midtrans_status(provider_status)
    if not transition_allowed(current, new):
        logger.warning(
            "[TransactionCommands] update_payment_status - 1: %s is %s, ignoring %s (%s)",
            order_id,
            current.value,
            new.value,
            provider_status,
        )
        return current, False

    await session.execute(
        text("""
            UPDATE transactions
            SET payment_status = :status,
                payment_method = :payment_method,
                transaction_code = :transaction_code,
                fraud_status = :fraud_status,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :id
        """),
        {
            "id": row.id,
            "status": new.value,
            "payment_method": payment_type,
            "transaction_code": provider_transaction_id,
            "fraud_status": fraud_status,
        },
    )
    await session.commit()
    logger.info(
        "[TransactionCommands] update_payment_status - %s: %s -> %s",
        order_id,
        current.value,
        new.value,
    )
    return new, True
