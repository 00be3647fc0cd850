"""
Product Service — commands
"""

import logging

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.common.errors import BadRequest, NotFound

from . import queries

logger = logging.getLogger(__name__)


async def create_category(session: AsyncSession, name: str, tagline: str, photo: str = "") -> dict:
    try:
        result = await session.execute(
            text("""
                INSERT INTO categories (name, tagline, photo, created_at, updated_at)
                VALUES (:name, :tagline, :photo, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                RETURNING id
            """),
            {"name": name, "tagline": tagline, "photo": photo},
        )
        category_id = result.scalar_one()
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise BadRequest(f"Category tagline '{tagline}' already exists") from e
    return {"id": category_id, "name": name, "tagline": tagline, "photo": photo}


async def create_product(
    session: AsyncSession,
    name: str,
    barcode: str,
    category_id: int,
    price: int,
    about: str = "",
    thumbnail: str = "",
    is_popular: bool = False,
) -> dict:
    if await queries.get_category(session, category_id) is None:
        raise NotFound("Category not found")
    try:
        result = await session.execute(
            text("""
                INSERT INTO products
                    (name, barcode, category_id, price, about, thumbnail, is_popular, created_at, updated_at)
                VALUES
                    (:name, :barcode, :category_id, :price, :about, :thumbnail, :is_popular,
                     CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                RETURNING id
            """),
            {
                "name": name,
                "barcode": barcode,
                "category_id": category_id,
                "price": price,
                "about": about,
                "thumbnail": thumbnail,
                "is_popular": is_popular,
            },
        )
        product_id = result.scalar_one()
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.error("[ProductCommands] create_product - 1: %s", e.orig)
        raise BadRequest(f"Barcode '{barcode}' already exists") from e
    return await queries.get_product(session, product_id)
