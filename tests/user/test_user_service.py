import pytest

from services.common.database import create_schema
from services.user.app import commands, queries
from services.user.app.db import metadata
from services.user.app.main import UserContainer, create_app
from services.user.app.passwords import check_password, hash_password


class TestPasswords:
    def test_hash_round_trip(self):
        encoded = hash_password("rahasia123", rounds=4)
        assert encoded.startswith("$2b$04$")
        assert check_password("rahasia123", encoded)
        assert not check_password("rahasia124", encoded)

    def test_same_password_gets_distinct_salts(self):
        assert hash_password("x", rounds=4) != hash_password("x", rounds=4)

    @pytest.mark.parametrize("encoded", ["", "plain", "$2b$04$tooshort"])
    def test_unparseable_hash_never_matches(self, encoded):
        assert not check_password("anything", encoded)


@pytest.fixture
async def container(settings, engine, session_factory):
    settings = settings.model_copy(update={"seed_manager_password": "manager-pass"})
    container = UserContainer(settings=settings, engine=engine, session_factory=session_factory)
    await container.start()
    return container


@pytest.fixture
async def client(container, asgi_client, gateway_headers):
    async with asgi_client(create_app(container)) as client:
        client.headers.update(gateway_headers)
        yield client


class TestSeed:
    async def test_roles_and_manager_are_seeded_once(self, container):
        # a second start must not duplicate anything
        await container.start()
        async with container.session_factory() as session:
            login = await commands.check_credentials(session, "manager@mail.com", "manager-pass")
        assert login["role"] == ["Manager"]

    async def test_no_manager_without_password(self, engine, session_factory):
        await create_schema(engine, metadata)
        async with session_factory() as session:
            await commands.seed(session, "manager@mail.com", "")
            assert await queries.get_user_with_password(session, "manager@mail.com") is None
            assert await queries.get_role_by_name(session, "Keeper") is not None


class TestLogin:
    async def test_valid_credentials(self, client):
        resp = await client.post(
            "/api/v1/auth/login", json={"email": "manager@mail.com", "password": "manager-pass"}
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["email"] == "manager@mail.com"
        assert data["role"] == ["Manager"]

    async def test_wrong_password_is_401(self, client):
        resp = await client.post(
            "/api/v1/auth/login", json={"email": "manager@mail.com", "password": "nope"}
        )
        assert resp.status_code == 401

    async def test_unknown_email_is_404(self, client):
        resp = await client.post(
            "/api/v1/auth/login", json={"email": "ghost@mail.com", "password": "nope"}
        )
        assert resp.status_code == 404


class TestUsersAndRoles:
    async def test_create_user_with_keeper_role(self, client):
        roles = {r["name"]: r["id"] for r in (await client.get("/api/v1/roles")).json()["data"]}
        resp = await client.post(
            "/api/v1/users",
            json={
                "name": "Budi",
                "email": "budi@mail.com",
                "password": "secret1",
                "role_ids": [roles["Keeper"]],
            },
        )
        assert resp.status_code == 201
        user = resp.json()["data"]
        assert user["roles"] == ["Keeper"]
        assert "password" not in user

        resp = await client.get(f"/api/v1/users/{user['id']}")
        assert resp.json()["data"]["email"] == "budi@mail.com"

    async def test_duplicate_email_is_400(self, client):
        payload = {"name": "A", "email": "a@mail.com", "password": "secret1"}
        assert (await client.post("/api/v1/users", json=payload)).status_code == 201
        assert (await client.post("/api/v1/users", json=payload)).status_code == 400

    async def test_assign_role(self, client):
        user = (await client.post(
            "/api/v1/users", json={"name": "C", "email": "c@mail.com", "password": "secret1"}
        )).json()["data"]
        role = (await client.post("/api/v1/roles", json={"name": "Auditor"})).json()["data"]

        resp = await client.post("/api/v1/assign-role", json={"user_id": user["id"], "role_id": role["id"]})
        assert resp.status_code == 200
        resp = await client.get(f"/api/v1/users/{user['id']}")
        assert resp.json()["data"]["roles"] == ["Auditor"]

    async def test_assign_unknown_role_is_404(self, client):
        resp = await client.post("/api/v1/assign-role", json={"user_id": 1, "role_id": 99})
        assert resp.status_code == 404
