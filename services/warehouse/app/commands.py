"""
Warehouse Service — commands

Administrative writes to warehouses and their stock. Automatic decrements
arrive through the stock-reduction consumer (see consumer.py).
"""

import logging

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.common.errors import BadRequest, NotFound

from . import queries

logger = logging.getLogger(__name__)


async def create_warehouse(session: AsyncSession, name: str, address: str = "", phone: str = "", photo: str = "") -> dict:
    result = await session.execute(
        text("""
            INSERT INTO warehouses (name, address, phone, photo, created_at, updated_at)
            VALUES (:name, :address, :phone, :photo, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            RETURNING id
        """),
        {"name": name, "address": address, "phone": phone, "photo": photo},
    )
    warehouse_id = result.scalar_one()
    await session.commit()
    return await queries.get_warehouse(session, warehouse_id)


async def add_stock_entry(session: AsyncSession, warehouse_id: int, product_id: int, stock: int) -> dict:
    if await queries.get_warehouse(session, warehouse_id) is None:
        raise NotFound("Warehouse not found")
    try:
        await session.execute(
            text("""
                INSERT INTO warehouse_products (warehouse_id, product_id, stock, created_at, updated_at)
                VALUES (:warehouse_id, :product_id, :stock, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            """),
            {"warehouse_id": warehouse_id, "product_id": product_id, "stock": stock},
        )
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise BadRequest(
            f"Product {product_id} already stocked in warehouse {warehouse_id}"
        ) from e
    logger.info(
        "[WarehouseCommands] add_stock_entry - warehouse %d product %d stock %d",
        warehouse_id,
        product_id,
        stock,
    )
    return await queries.get_stock(session, warehouse_id, product_id)


async def set_stock(session: AsyncSession, warehouse_id: int, product_id: int, stock: int) -> dict:
    result = await session.execute(
        text("""
            UPDATE warehouse_products
            SET stock = :stock, updated_at = CURRENT_TIMESTAMP
            WHERE warehouse_id = :warehouse_id AND product_id = :product_id
        """),
        {"warehouse_id": warehouse_id, "product_id": product_id, "stock": stock},
    )
    if result.rowcount == 0:
        await session.rollback()
        raise NotFound("Warehouse product not found")
    await session.commit()
    return await queries.get_stock(session, warehouse_id, product_id)
