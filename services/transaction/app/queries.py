"""
Transaction Service — queries (read side)

Rows come straight from the store; enrich() then adds product and merchant
names through the cached clients. Enrichment is best effort: a failed
lookup is logged and the name left empty.
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from services.common.clients import MerchantClient, ProductClient
from services.common.database import isoformat
from services.common.errors import ServiceError

from .models import PaymentStatus

logger = logging.getLogger(__name__)

_SORTABLE = {"id": "id", "name": "name", "created_at": "created_at"}

_COLUMNS = """
    id, name, phone, email, address, sub_total, tax_total, grand_total,
    merchant_id, payment_status, payment_method, transaction_code, order_id,
    payment_token, fraud_status, notes, currency, created_at
"""


def _transaction_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "phone": row.phone,
        "email": row.email,
        "address": row.address,
        "sub_total": row.sub_total,
        "tax_total": row.tax_total,
        "grand_total": row.grand_total,
        "merchant_id": row.merchant_id,
        "merchant_name": "",
        "payment_status": row.payment_status,
        "payment_method": row.payment_method,
        "transaction_code": row.transaction_code,
        "order_id": row.order_id,
        "payment_token": row.payment_token,
        "fraud_status": row.fraud_status,
        "notes": row.notes,
        "currency": row.currency,
        "created_at": isoformat(row.created_at),
        "transaction_products": [],
    }


async def _products_of(session: AsyncSession, transaction_id: int) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT id, transaction_id, product_id, quantity, price, sub_total
            FROM transaction_products
            WHERE transaction_id = :transaction_id
            ORDER BY id ASC
        """),
        {"transaction_id": transaction_id},
    )
    return [
        {
            "id": row.id,
            "transaction_id": row.transaction_id,
            "product_id": row.product_id,
            "product_name": "",
            "quantity": row.quantity,
            "price": row.price,
            "sub_total": row.sub_total,
        }
        for row in result.fetchall()
    ]


async def get_transaction(session: AsyncSession, transaction_id: int) -> dict | None:
    result = await session.execute(
        text(f"SELECT {_COLUMNS} FROM transactions WHERE id = :id"),
        {"id": transaction_id},
    )
    row = result.fetchone()
    if row is None:
        return None
    tx = _transaction_dict(row)
    tx["transaction_products"] = await _products_of(session, row.id)
    return tx


async def list_transactions(
    session: AsyncSession,
    page: int,
    limit: int,
    search: str = "",
    sort_by: str = "id",
    sort_order: str = "desc",
    merchant_id: int | None = None,
) -> tuple[list[dict], int]:
    clauses, params = [], {"limit": limit, "offset": (page - 1) * limit}
    if search:
        clauses.append("(LOWER(name) LIKE :search OR LOWER(phone) LIKE :search)")
        params["search"] = f"%{search.lower()}%"
    if merchant_id is not None:
        clauses.append("merchant_id = :merchant_id")
        params["merchant_id"] = merchant_id
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    order = f"{_SORTABLE.get(sort_by, 'id')} {'ASC' if sort_order.lower() == 'asc' else 'DESC'}"

    total = (await session.execute(
        text(f"SELECT COUNT(*) FROM transactions {where}"), params
    )).scalar_one()
    result = await session.execute(
        text(f"""
            SELECT {_COLUMNS} FROM transactions {where}
            ORDER BY {order}
            LIMIT :limit OFFSET :offset
        """),
        params,
    )
    transactions = []
    for row in result.fetchall():
        tx = _transaction_dict(row)
        tx["transaction_products"] = await _products_of(session, row.id)
        transactions.append(tx)
    return transactions, int(total)


async def dashboard_stats(session: AsyncSession, merchant_id: int | None = None) -> dict:
    """Totals over successfully paid transactions only."""
    params = {"status": PaymentStatus.SUCCESS.value}
    merchant_filter = ""
    if merchant_id is not None:
        merchant_filter = "AND t.merchant_id = :merchant_id"
        params["merchant_id"] = merchant_id

    totals = (await session.execute(
        text(f"""
            SELECT COALESCE(SUM(t.grand_total), 0) AS total_revenue,
                   COUNT(*) AS total_transactions
            FROM transactions t
            WHERE t.payment_status = :status {merchant_filter}
        """),
        params,
    )).fetchone()
    sold = (await session.execute(
        text(f"""
            SELECT COALESCE(SUM(tp.quantity), 0) AS products_sold
            FROM transaction_products tp
            JOIN transactions t ON t.id = tp.transaction_id
            WHERE t.payment_status = :status {merchant_filter}
        """),
        params,
    )).scalar_one()
    return {
        "total_revenue": int(totals.total_revenue),
        "total_transactions": int(totals.total_transactions),
        "products_sold": int(sold),
    }


async def enrich(
    transactions: list[dict],
    product_client: ProductClient,
    merchant_client: MerchantClient,
) -> list[dict]:
    for tx in transactions:
        try:
            tx["merchant_name"] = (await merchant_client.get_merchant(tx["merchant_id"])).name
        except ServiceError as e:
            logger.warning("[TransactionQueries] enrich - 1: merchant %d: %s", tx["merchant_id"], e.message)
        for line in tx["transaction_products"]:
            try:
                line["product_name"] = (await product_client.get_product(line["product_id"])).name
            except ServiceError as e:
                logger.warning("[TransactionQueries] enrich - 2: product %d: %s", line["product_id"], e.message)
    return transactions
