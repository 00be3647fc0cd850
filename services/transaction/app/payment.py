"""
Transaction Service — Midtrans Snap payment provider

create_payment() opens a Snap transaction for an order and returns the token
the customer pays with. Notifications come back through the callback
endpoint; verify_signature() checks them:

    signature_key = sha512(order_id + status_code + gross_amount + server_key)
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass

import httpx

from services.common.config import Settings
from services.common.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://app.sandbox.midtrans.com/snap/v1/transactions"
PRODUCTION_URL = "https://app.midtrans.com/snap/v1/transactions"


@dataclass(frozen=True)
class PaymentItem:
    id: str
    name: str
    price: int
    quantity: int


@dataclass(frozen=True)
class PaymentRequest:
    order_id: str
    amount: int
    items: list[PaymentItem]
    customer_name: str
    customer_email: str
    customer_phone: str


class MidtransClient:
    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self.server_key = settings.midtrans_server_key
        self.url = PRODUCTION_URL if settings.midtrans_is_production else SANDBOX_URL
        self.http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    async def create_payment(self, req: PaymentRequest) -> str:
        payload = {
            "transaction_details": {"order_id": req.order_id, "gross_amount": req.amount},
            "customer_details": {
                "first_name": req.customer_name,
                "email": req.customer_email,
                "phone": req.customer_phone,
            },
            "item_details": [
                {"id": i.id, "name": i.name[:50], "price": i.price, "quantity": i.quantity}
                for i in req.items
            ],
        }
        try:
            resp = await self.http.post(
                self.url,
                json=payload,
                auth=(self.server_key, ""),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("[MidtransClient] create_payment - 1: %s", e)
            raise UpstreamUnavailable("Payment provider unavailable") from e

        if resp.status_code not in (200, 201):
            logger.error(
                "[MidtransClient] create_payment - 2: status %d: %s", resp.status_code, resp.text
            )
            raise UpstreamUnavailable("Payment provider rejected the transaction")
        try:
            return resp.json()["token"]
        except (ValueError, KeyError) as e:
            raise UpstreamUnavailable("Payment provider returned no token") from e

    async def aclose(self) -> None:
        await self.http.aclose()


def signature_for(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode()).hexdigest()


def verify_signature(
    order_id: str,
    status_code: str,
    gross_amount: str,
    server_key: str,
    signature_key: str,
) -> bool:
    expected = signature_for(order_id, status_code, gross_amount, server_key)
    return hmac.compare_digest(expected, signature_key or "")
