"""
User Service — FastAPI entry point

Owns users and roles. The gateway asks it to check login credentials and the
transaction service asks it for a caller's role names (dashboards).
"""

from dataclasses import dataclass

from fastapi import Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncEngine

from services.common.config import Settings
from services.common.database import create_schema, make_engine, make_session_factory
from services.common.errors import NotFound
from services.common.service import container_of, create_service_app

from . import commands, queries
from .db import metadata


@dataclass
class UserContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: object

    async def start(self) -> None:
        await create_schema(self.engine, metadata)
        async with self.session_factory() as session:
            await commands.seed(
                session,
                self.settings.seed_manager_email,
                self.settings.seed_manager_password,
            )

    async def aclose(self) -> None:
        await self.engine.dispose()


async def build_container(settings: Settings) -> UserContainer:
    engine = make_engine(settings.database_url)
    return UserContainer(settings=settings, engine=engine, session_factory=make_session_factory(engine))


# ── Request Models ───────────────────────────────

class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class CreateUserRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=6, max_length=72)
    phone: str = ""
    role_ids: list[int] = []


class CreateRoleRequest(BaseModel):
    name: str = Field(min_length=1)


class AssignRoleRequest(BaseModel):
    user_id: int
    role_id: int


def create_app(container: UserContainer | None = None):
    app = create_service_app("User Service", "user-service", container, build_container)

    # ── Auth ─────────────────────────────────────────

    @app.post("/api/v1/auth/login")
    async def login(req: LoginRequest, request: Request):
        async with container_of(request).session_factory() as session:
            data = await commands.check_credentials(session, req.email, req.password)
        return {"message": "Login successful", "data": data}

    # ── Users ────────────────────────────────────────

    @app.post("/api/v1/users", status_code=201)
    async def create_user(req: CreateUserRequest, request: Request):
        async with container_of(request).session_factory() as session:
            user = await commands.create_user(
                session, req.name, req.email, req.password, req.phone, req.role_ids
            )
        return {"message": "User created successfully", "data": user}

    @app.get("/api/v1/users")
    async def list_users(request: Request, page: int = 1, limit: int = 10, search: str = ""):
        page, limit = max(page, 1), min(max(limit, 1), 100)
        async with container_of(request).session_factory() as session:
            users, total = await queries.list_users(session, page, limit, search)
        return {
            "message": "Users fetched successfully",
            "data": {
                "users": users,
                "pagination": {"page": page, "limit": limit, "total_count": total},
            },
        }

    @app.get("/api/v1/users/{user_id}")
    async def get_user(user_id: int, request: Request):
        async with container_of(request).session_factory() as session:
            user = await queries.get_user(session, user_id)
        if user is None:
            raise NotFound("User not found")
        return {"message": "User fetched successfully", "data": user}

    # ── Roles ────────────────────────────────────────

    @app.get("/api/v1/roles")
    async def list_roles(request: Request):
        async with container_of(request).session_factory() as session:
            return {"message": "Roles fetched successfully", "data": await queries.list_roles(session)}

    @app.post("/api/v1/roles", status_code=201)
    async def create_role(req: CreateRoleRequest, request: Request):
        async with container_of(request).session_factory() as session:
            role = await commands.create_role(session, req.name)
        return {"message": "Role created successfully", "data": role}

    @app.post("/api/v1/assign-role")
    async def assign_role(req: AssignRoleRequest, request: Request):
        async with container_of(request).session_factory() as session:
            await commands.assign_role(session, req.user_id, req.role_id)
        return {"message": "Role assigned successfully"}

    return app


app = create_app()
