"""
Product Service — queries
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

_PRODUCT_COLUMNS = """
    p.id, p.name, p.barcode, p.price, p.about, p.thumbnail, p.is_popular,
    p.category_id, c.name AS category_name, c.tagline AS category_tagline
"""

_SORTABLE = {"id": "p.id", "name": "p.name", "price": "p.price", "created_at": "p.created_at"}


def _product_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "barcode": row.barcode,
        "price": row.price,
        "about": row.about,
        "thumbnail": row.thumbnail,
        "is_popular": bool(row.is_popular),
        "category_id": row.category_id,
        "category": {
            "id": row.category_id,
            "name": row.category_name,
            "tagline": row.category_tagline,
        },
    }


async def get_product(session: AsyncSession, product_id: int) -> dict | None:
    result = await session.execute(
        text(f"""
            SELECT {_PRODUCT_COLUMNS}
            FROM products p LEFT JOIN categories c ON c.id = p.category_id
            WHERE p.id = :id
        """),
        {"id": product_id},
    )
    row = result.fetchone()
    return _product_dict(row) if row else None


async def get_product_by_barcode(session: AsyncSession, barcode: str) -> dict | None:
    result = await session.execute(
        text(f"""
            SELECT {_PRODUCT_COLUMNS}
            FROM products p LEFT JOIN categories c ON c.id = p.category_id
            WHERE p.barcode = :barcode
        """),
        {"barcode": barcode},
    )
    row = result.fetchone()
    return _product_dict(row) if row else None


async def list_products(
    session: AsyncSession,
    page: int,
    limit: int,
    search: str = "",
    sort_by: str = "id",
    sort_order: str = "asc",
    category_id: int | None = None,
) -> tuple[list[dict], int]:
    clauses, params = [], {"limit": limit, "offset": (page - 1) * limit}
    if search:
        clauses.append("(LOWER(p.name) LIKE :search OR p.barcode LIKE :search)")
        params["search"] = f"%{search.lower()}%"
    if category_id is not None:
        clauses.append("p.category_id = :category_id")
        params["category_id"] = category_id
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    order = f"{_SORTABLE.get(sort_by, 'p.id')} {'DESC' if sort_order.lower() == 'desc' else 'ASC'}"

    total = (await session.execute(
        text(f"SELECT COUNT(*) FROM products p {where}"), params
    )).scalar_one()
    result = await session.execute(
        text(f"""
            SELECT {_PRODUCT_COLUMNS}
            FROM products p LEFT JOIN categories c ON c.id = p.category_id
            {where}
            ORDER BY {order}
            LIMIT :limit OFFSET :offset
        """),
        params,
    )
    return [_product_dict(row) for row in result.fetchall()], int(total)


async def list_categories(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("SELECT id, name, tagline, photo FROM categories ORDER BY id ASC")
    )
    return [
        {"id": row.id, "name": row.name, "tagline": row.tagline, "photo": row.photo}
        for row in result.fetchall()
    ]


async def get_category(session: AsyncSession, category_id: int) -> dict | None:
    result = await session.execute(
        text("SELECT id, name, tagline, photo FROM categories WHERE id = :id"),
        {"id": category_id},
    )
    row = result.fetchone()
    if row is None:
        return None
    return {"id": row.id, "name": row.name, "tagline": row.tagline, "photo": row.photo}
