"""
User Service — queries

Users are returned with their role names; the password hash never leaves
this module.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from services.common.database import isoformat


async def role_names_of(session: AsyncSession, user_id: int) -> list[str]:
    result = await session.execute(
        text("""
            SELECT r.name FROM roles r
            JOIN user_role ur ON ur.role_id = r.id
            WHERE ur.user_id = :user_id
            ORDER BY r.id ASC
        """),
        {"user_id": user_id},
    )
    return [row.name for row in result.fetchall()]


def _user_dict(row, role_names: list[str]) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "email": row.email,
        "phone": row.phone,
        "photo": row.photo,
        "roles": role_names,
        "role_name": role_names[0] if role_names else "",
        "created_at": isoformat(row.created_at),
    }


async def get_user(session: AsyncSession, user_id: int) -> dict | None:
    result = await session.execute(
        text("""
            SELECT id, name, email, phone, photo, created_at
            FROM users WHERE id = :id
        """),
        {"id": user_id},
    )
    row = result.fetchone()
    if row is None:
        return None
    return _user_dict(row, await role_names_of(session, row.id))


async def get_user_with_password(session: AsyncSession, email: str):
    result = await session.execute(
        text("SELECT id, email, password FROM users WHERE email = :email"),
        {"email": email},
    )
    return result.fetchone()


async def list_users(session: AsyncSession, page: int, limit: int, search: str = "") -> tuple[list[dict], int]:
    params = {"limit": limit, "offset": (page - 1) * limit}
    where = ""
    if search:
        where = "WHERE LOWER(name) LIKE :search OR LOWER(email) LIKE :search"
        params["search"] = f"%{search.lower()}%"

    total = (await session.execute(
        text(f"SELECT COUNT(*) AS n FROM users {where}"), params
    )).scalar_one()
    result = await session.execute(
        text(f"""
            SELECT id, name, email, phone, photo, created_at
            FROM users {where}
            ORDER BY id ASC
            LIMIT :limit OFFSET :offset
        """),
        params,
    )
    users = [_user_dict(row, await role_names_of(session, row.id)) for row in result.fetchall()]
    return users, int(total)


async def list_roles(session: AsyncSession) -> list[dict]:
    result = await session.execute(text("SELECT id, name FROM roles ORDER BY id ASC"))
    return [{"id": row.id, "name": row.name} for row in result.fetchall()]


async def get_role_by_name(session: AsyncSession, name: str):
    result = await session.execute(
        text("SELECT id, name FROM roles WHERE name = :name"), {"name": name}
    )
    return result.fetchone()
