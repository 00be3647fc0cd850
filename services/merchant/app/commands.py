"""
Merchant Service — commands

Stock allocation moves units from a warehouse to a merchant:

  1. read the warehouse's live stock (WarehouseClient, never cached)
  2. refuse with InsufficientStock when it cannot cover the request
  3. add the units to the merchant ledger and stage a
     warehouse.stock.reduced event in the outbox, in one transaction

The warehouse consumer applies the decrement on its side.
"""

import logging
import time

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from services.common import outbox
from services.common.clients import WarehouseClient
from services.common.errors import InsufficientStock, NotFound
from services.common.events import WAREHOUSE_STOCK_REDUCED, StockReducedEvent, StockReducedItem

from . import queries

logger = logging.getLogger(__name__)


async def create_merchant(
    session: AsyncSession,
    name: str,
    keeper_id: int,
    address: str = "",
    phone: str = "",
    photo: str = "",
) -> dict:
    result = await session.execute(
        text("""
            INSERT INTO merchants (name, address, phone, photo, keeper_id, created_at, updated_at)
            VALUES (:name, :address, :phone, :photo, :keeper_id, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            RETURNING id
        """),
        {"name": name, "address": address, "phone": phone, "photo": photo, "keeper_id": keeper_id},
    )
    merchant_id = result.scalar_one()
    await session.commit()
    return await queries.get_merchant(session, merchant_id)


async def allocate_stock(
    session: AsyncSession,
    warehouse_client: WarehouseClient,
    merchant_id: int,
    product_id: int,
    warehouse_id: int,
    quantity: int,
) -> dict:
    if await queries.get_merchant(session, merchant_id) is None:
        raise NotFound("Merchant not found")

    available = await warehouse_client.get_stock(warehouse_id, product_id)
    if available.stock < quantity:
        logger.error(
            "[MerchantCommands] allocate_stock - 1: warehouse %d product %d has %d, %d requested",
            warehouse_id,
            product_id,
            available.stock,
            quantity,
        )
        raise InsufficientStock(product_id, quantity, available.stock, available.product_name)

    # one statement, so racing first allocations of a pair both land on the same row
    await session.execute(
        text("""
            INSERT INTO merchant_products
                (merchant_id, product_id, warehouse_id, stock, created_at, updated_at)
            VALUES
                (:merchant_id, :product_id, :warehouse_id, :qty, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            ON CONFLICT (merchant_id, product_id) DO UPDATE
            SET stock = merchant_products.stock + excluded.stock,
                warehouse_id = excluded.warehouse_id,
                updated_at = CURRENT_TIMESTAMP
        """),
        {"qty": quantity, "warehouse_id": warehouse_id, "merchant_id": merchant_id, "product_id": product_id},
    )

    event = StockReducedEvent(
        location_id=warehouse_id,
        products=[StockReducedItem(product_id=product_id, quantity=quantity)],
        order_id=f"ALLOCATION_{int(time.time())}_{merchant_id}",
    )
    await outbox.enqueue(session, WAREHOUSE_STOCK_REDUCED, event)
    await session.commit()

    logger.info(
        "[MerchantCommands] allocate_stock - %d x product %d from warehouse %d to merchant %d",
        quantity,
        product_id,
        warehouse_id,
        merchant_id,
    )
    return await queries.find_merchant_product(session, merchant_id, product_id)


async def set_stock(session: AsyncSession, merchant_product_id: int, stock: int) -> dict:
    result = await session.execute(
        text("""
            UPDATE merchant_products
            SET stock = :stock, updated_at = CURRENT_TIMESTAMP
            WHERE id = :id
        """),
        {"id": merchant_product_id, "stock": stock},
    )
    if result.rowcount == 0:
        await session.rollback()
        raise NotFound("Merchant product not found")
    await session.commit()
    return await queries.get_merchant_product(session, merchant_product_id)
