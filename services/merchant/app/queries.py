"""
Merchant Service — queries
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from services.common.database import isoformat


def _merchant_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "address": row.address,
        "photo": row.photo,
        "phone": row.phone,
        "keeper_id": row.keeper_id,
        "created_at": isoformat(row.created_at),
    }


def _merchant_product_dict(row) -> dict:
    return {
        "id": row.id,
        "merchant_id": row.merchant_id,
        "product_id": row.product_id,
        "warehouse_id": row.warehouse_id,
        "stock": row.stock,
        "updated_at": isoformat(row.updated_at),
    }


async def get_merchant(session: AsyncSession, merchant_id: int) -> dict | None:
    result = await session.execute(
        text("""
            SELECT id, name, address, photo, phone, keeper_id, created_at
            FROM merchants WHERE id = :id
        """),
        {"id": merchant_id},
    )
    row = result.fetchone()
    return _merchant_dict(row) if row else None


async def list_merchants(
    session: AsyncSession,
    page: int,
    limit: int,
    search: str = "",
    keeper_id: int | None = None,
) -> tuple[list[dict], int]:
    clauses, params = [], {"limit": limit, "offset": (page - 1) * limit}
    if search:
        clauses.append("LOWER(name) LIKE :search")
        params["search"] = f"%{search.lower()}%"
    if keeper_id is not None:
        clauses.append("keeper_id = :keeper_id")
        params["keeper_id"] = keeper_id
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    total = (await session.execute(
        text(f"SELECT COUNT(*) FROM merchants {where}"), params
    )).scalar_one()
    result = await session.execute(
        text(f"""
            SELECT id, name, address, photo, phone, keeper_id, created_at
            FROM merchants {where}
            ORDER BY id ASC
            LIMIT :limit OFFSET :offset
        """),
        params,
    )
    return [_merchant_dict(row) for row in result.fetchall()], int(total)


async def get_merchant_product(session: AsyncSession, merchant_product_id: int) -> dict | None:
    result = await session.execute(
        text("""
            SELECT id, merchant_id, product_id, warehouse_id, stock, updated_at
            FROM merchant_products WHERE id = :id
        """),
        {"id": merchant_product_id},
    )
    row = result.fetchone()
    return _merchant_product_dict(row) if row else None


async def find_merchant_product(session: AsyncSession, merchant_id: int, product_id: int) -> dict | None:
    result = await session.execute(
        text("""
            SELECT id, merchant_id, product_id, warehouse_id, stock, updated_at
            FROM merchant_products
            WHERE merchant_id = :merchant_id AND product_id = :product_id
        """),
        {"merchant_id": merchant_id, "product_id": product_id},
    )
    row = result.fetchone()
    return _merchant_product_dict(row) if row else None


async def list_merchant_products(
    session: AsyncSession,
    page: int,
    limit: int,
    merchant_id: int | None = None,
    product_id: int | None = None,
) -> tuple[list[dict], int]:
    clauses, params = [], {"limit": limit, "offset": (page - 1) * limit}
    if merchant_id is not None:
        clauses.append("merchant_id = :merchant_id")
        params["merchant_id"] = merchant_id
    if product_id is not None:
        clauses.append("product_id = :product_id")
        params["product_id"] = product_id
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    total = (await session.execute(
        text(f"SELECT COUNT(*) FROM merchant_products {where}"), params
    )).scalar_one()
    result = await session.execute(
        text(f"""
            SELECT id, merchant_id, product_id, warehouse_id, stock, updated_at
            FROM merchant_products {where}
            ORDER BY id ASC
            LIMIT :limit OFFSET :offset
        """),
        params,
    )
    return [_merchant_product_dict(row) for row in result.fetchall()], int(total)


async def list_reduction_failures(session: AsyncSession, limit: int = 100) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT id, event_id, order_id, location_id, product_id,
                   requested, available, reason, created_at
            FROM stock_reduction_failures
            ORDER BY id DESC
            LIMIT :limit
        """),
        {"limit": limit},
    )
    return [
        {
            "id": row.id,
            "event_id": row.event_id,
            "order_id": row.order_id,
            "merchant_id": row.location_id,
            "product_id": row.product_id,
            "requested": row.requested,
            "available": row.available,
            "reason": row.reason,
            "created_at": isoformat(row.created_at),
        }
        for row in result.fetchall()
    ]
