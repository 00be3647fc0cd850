"""
Warehouse Service — queries
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from services.common.database import isoformat


def _warehouse_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "address": row.address,
        "photo": row.photo,
        "phone": row.phone,
        "created_at": isoformat(row.created_at),
    }


def _stock_dict(row) -> dict:
    return {
        "id": row.id,
        "warehouse_id": row.warehouse_id,
        "product_id": row.product_id,
        "stock": row.stock,
        "updated_at": isoformat(row.updated_at),
    }


async def get_warehouse(session: AsyncSession, warehouse_id: int) -> dict | None:
    result = await session.execute(
        text("""
            SELECT id, name, address, photo, phone, created_at
            FROM warehouses WHERE id = :id
        """),
        {"id": warehouse_id},
    )
    row = result.fetchone()
    return _warehouse_dict(row) if row else None


async def list_warehouses(session: AsyncSession, page: int, limit: int, search: str = "") -> tuple[list[dict], int]:
    params = {"limit": limit, "offset": (page - 1) * limit}
    where = ""
    if search:
        where = "WHERE LOWER(name) LIKE :search"
        params["search"] = f"%{search.lower()}%"
    total = (await session.execute(
        text(f"SELECT COUNT(*) FROM warehouses {where}"), params
    )).scalar_one()
    result = await session.execute(
        text(f"""
            SELECT id, name, address, photo, phone, created_at
            FROM warehouses {where}
            ORDER BY id ASC
            LIMIT :limit OFFSET :offset
        """),
        params,
    )
    return [_warehouse_dict(row) for row in result.fetchall()], int(total)


async def list_stock(session: AsyncSession, warehouse_id: int) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT id, warehouse_id, product_id, stock, updated_at
            FROM warehouse_products
            WHERE warehouse_id = :warehouse_id
            ORDER BY product_id ASC
        """),
        {"warehouse_id": warehouse_id},
    )
    return [_stock_dict(row) for row in result.fetchall()]


async def get_stock(session: AsyncSession, warehouse_id: int, product_id: int) -> dict | None:
    result = await session.execute(
        text("""
            SELECT id, warehouse_id, product_id, stock, updated_at
            FROM warehouse_products
            WHERE warehouse_id = :warehouse_id AND product_id = :product_id
        """),
        {"warehouse_id": warehouse_id, "product_id": product_id},
    )
    row = result.fetchone()
    return _stock_dict(row) if row else None


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
            "warehouse_id": row.location_id,
            "product_id": row.product_id,
            "requested": row.requested,
            "available": row.available,
            "reason": row.reason,
            "created_at": isoformat(row.created_at),
        }
        for row in result.fetchall()
    ]
