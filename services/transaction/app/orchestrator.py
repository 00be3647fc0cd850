"""
Transaction Service — checkout orchestration

  ┌─────────────────────────────────────────────────────────────┐
  │  1. Read live merchant stock for every ordered product      │
  │     └─ short → InsufficientStock, nothing is written        │
  │  2. Compute sub total / tax / grand total                   │
  │  3. One DB transaction:                                     │
  │       transaction row + line items + merchant.stock.reduced │
  │       (outbox)                                              │
  │  4. Wake the outbox dispatcher                              │
  │  5. Open a Snap payment and store its token                 │
  └─────────────────────────────────────────────────────────────┘

The stock event is committed with the order itself, so an order is never
persisted without its reduction being delivered eventually. A payment
provider failure after step 3 leaves the order pending without a token.
"""

import logging
import secrets
import time

from services.common import outbox
from services.common.clients import MerchantClient
from services.common.errors import InsufficientStock
from services.common.events import MERCHANT_STOCK_REDUCED, StockReducedEvent, StockReducedItem
from services.common.outbox import OutboxDispatcher

from . import commands
from .commands import Customer
from .models import OrderLine, compute_totals
from .payment import MidtransClient, PaymentItem, PaymentRequest

logger = logging.getLogger(__name__)


def new_order_id(merchant_id: int, now: float | None = None) -> str:
    """ORDER_<unix>_<merchant>_<random>; the suffix keeps same-second orders apart."""
    unix = int(now if now is not None else time.time())
    return f"ORDER_{unix}_{merchant_id}_{secrets.token_hex(3)}"


class TransactionOrchestrator:
    def __init__(
        self,
        session_factory,
        merchant_client: MerchantClient,
        payment: MidtransClient,
        dispatcher: OutboxDispatcher,
    ) -> None:
        self.session_factory = session_factory
        self.merchant_client = merchant_client
        self.payment = payment
        self.dispatcher = dispatcher

    async def validate_stock(self, merchant_id: int, lines: list[OrderLine]) -> dict[int, str]:
        """Check the merchant can cover every product; returns product names by id."""
        required: dict[int, int] = {}
        for line in lines:
            required[line.product_id] = required.get(line.product_id, 0) + line.quantity

        names: dict[int, str] = {}
        for product_id, quantity in required.items():
            level = await self.merchant_client.get_stock(merchant_id, product_id)
            available = level.stock if level is not None else 0
            name = level.product_name if level is not None else ""
            if available < quantity:
                logger.info(
                    "[TransactionOrchestrator] validate_stock - merchant %d product %d: need %d, have %d",
                    merchant_id,
                    product_id,
                    quantity,
                    available,
                )
                raise InsufficientStock(product_id, required=quantity, available=available, product_name=name)
            names[product_id] = name
        return names

    async def execute(self, customer: Customer, merchant_id: int, lines: list[OrderLine], notes: str = "") -> dict:
        # ── Step 1: stock check ─────────────────────
        names = await self.validate_stock(merchant_id, lines)

        # ── Step 2: totals ──────────────────────────
        totals = compute_totals(lines)
        order_id = new_order_id(merchant_id)

        # ── Step 3: order + stock event, one commit ─
        event = StockReducedEvent(
            location_id=merchant_id,
            order_id=order_id,
            products=[StockReducedItem(product_id=line.product_id, quantity=line.quantity) for line in lines],
        )
        async with self.session_factory() as session:
            transaction_id = await commands.insert_transaction(
                session, order_id, customer, merchant_id, lines, totals, notes
            )
            await outbox.enqueue(session, MERCHANT_STOCK_REDUCED, event)
            await session.commit()
        logger.info(
            "[TransactionOrchestrator] execute - order %s stored as transaction %d (grand total %d)",
            order_id,
            transaction_id,
            totals.grand_total,
        )

        # ── Step 4: hand the event to the dispatcher ─
        self.dispatcher.wake()

        # ── Step 5: payment token ───────────────────
        items = [
            PaymentItem(
                id=str(line.product_id),
                name=names.get(line.product_id) or f"Product {line.product_id}",
                price=line.price,
                quantity=line.quantity,
            )
            for line in lines
        ]
        if totals.tax_total:
            items.append(PaymentItem(id="TAX", name="Tax", price=totals.tax_total, quantity=1))
        token = await self.payment.create_payment(
            PaymentRequest(
                order_id=order_id,
                amount=totals.grand_total,
                items=items,
                customer_name=customer.name,
                customer_email=customer.email,
                customer_phone=customer.phone,
            )
        )
        async with self.session_factory() as session:
            await commands.set_payment_token(session, transaction_id, token)

        return {"transaction_id": transaction_id, "payment_token": token, "order_id": order_id}
