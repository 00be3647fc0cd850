"""
User Service — commands
"""

import logging

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.common.errors import BadRequest, NotFound, Unauthorized

from . import queries
from .passwords import check_password, hash_password

logger = logging.getLogger(__name__)

DEFAULT_ROLES = ("Manager", "Keeper")


async def check_credentials(session: AsyncSession, email: str, password: str) -> dict:
    """Return the login payload the gateway turns into a JWT."""
    row = await queries.get_user_with_password(session, email)
    if row is None:
        logger.info("[UserCommands] check_credentials - 1: unknown email %s", email)
        raise NotFound("User not found")
    if not check_password(password, row.password):
        logger.info("[UserCommands] check_credentials - 2: wrong password for %s", email)
        raise Unauthorized("Invalid email or password")
    return {
        "user_id": row.id,
        "email": row.email,
        "role": await queries.role_names_of(session, row.id),
    }


async def create_role(session: AsyncSession, name: str) -> dict:
    try:
        result = await session.execute(
            text("""
                INSERT INTO roles (name, created_at, updated_at)
                VALUES (:name, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                RETURNING id
            """),
            {"name": name},
        )
        role_id = result.scalar_one()
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise BadRequest(f"Role '{name}' already exists") from e
    return {"id": role_id, "name": name}


async def assign_role(session: AsyncSession, user_id: int, role_id: int) -> None:
    exists = await session.execute(
        text("SELECT 1 FROM users WHERE id = :id"), {"id": user_id}
    )
    if exists.fetchone() is None:
        raise NotFound("User not found")
    exists = await session.execute(
        text("SELECT 1 FROM roles WHERE id = :id"), {"id": role_id}
    )
    if exists.fetchone() is None:
        raise NotFound("Role not found")

    already = await session.execute(
        text("SELECT 1 FROM user_role WHERE user_id = :user_id AND role_id = :role_id"),
        {"user_id": user_id, "role_id": role_id},
    )
    if already.fetchone() is not None:
        return
    await session.execute(
        text("""
            INSERT INTO user_role (user_id, role_id, created_at, updated_at)
            VALUES (:user_id, :role_id, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
        """),
        {"user_id": user_id, "role_id": role_id},
    )
    await session.commit()


async def create_user(
    session: AsyncSession,
    name: str,
    email: str,
    password: str,
    phone: str = "",
    role_ids: list[int] | None = None,
) -> dict:
    """User and role links are written in one transaction."""
    try:
        result = await session.execute(
            text("""
                INSERT INTO users (name, email, password, phone, photo, created_at, updated_at)
                VALUES (:name, :email, :password, :phone, '', CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                RETURNING id
            """),
            {
                "name": name,
                "email": email,
                "password": hash_password(password),
                "phone": phone,
            },
        )
        user_id = result.scalar_one()
        for role_id in role_ids or []:
            await session.execute(
                text("""
                    INSERT INTO user_role (user_id, role_id, created_at, updated_at)
                    VALUES (:user_id, :role_id, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                """),
                {"user_id": user_id, "role_id": role_id},
            )
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.error("[UserCommands] create_user - 1: %s", e.orig)
        raise BadRequest("Email already registered or unknown role") from e

    return await queries.get_user(session, user_id)


async def seed(session: AsyncSession, manager_email: str, manager_password: str) -> None:
    for name in DEFAULT_ROLES:
        if await queries.get_role_by_name(session, name) is None:
            await create_role(session, name)
            logger.info("[UserSeeder] seed - role %s created", name)

    if not manager_password:
        return
    if await queries.get_user_with_password(session, manager_email) is not None:
        return
    manager = await queries.get_role_by_name(session, "Manager")
    await create_user(session, "manager", manager_email, manager_password, role_ids=[manager.id])
    logger.info("[UserSeeder] seed - manager %s created", manager_email)
