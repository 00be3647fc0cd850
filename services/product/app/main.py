"""
Product Service — FastAPI entry point

Product metadata (name, barcode, price, category). Stock is not kept here:
it lives in the warehouse and merchant ledgers.
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
class ProductContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: object

    async def start(self) -> None:
        await create_schema(self.engine, metadata)

    async def aclose(self) -> None:
        await self.engine.dispose()


async def build_container(settings: Settings) -> ProductContainer:
    engine = make_engine(settings.database_url)
    return ProductContainer(settings=settings, engine=engine, session_factory=make_session_factory(engine))


# ── Request Models ───────────────────────────────

class CreateCategoryRequest(BaseModel):
    name: str = Field(min_length=1)
    tagline: str = Field(min_length=1)
    photo: str = ""


class CreateProductRequest(BaseModel):
    name: str = Field(min_length=1)
    barcode: str = Field(min_length=1)
    category_id: int
    price: int = Field(gt=0)
    about: str = ""
    thumbnail: str = ""
    is_popular: bool = False


def create_app(container: ProductContainer | None = None):
    app = create_service_app("Product Service", "product-service", container, build_container)

    # ── Categories ───────────────────────────────────

    @app.post("/api/v1/categories", status_code=201)
    async def create_category(req: CreateCategoryRequest, request: Request):
        async with container_of(request).session_factory() as session:
            category = await commands.create_category(session, req.name, req.tagline, req.photo)
        return {"message": "Category created successfully", "data": category}

    @app.get("/api/v1/categories")
    async def list_categories(request: Request):
        async with container_of(request).session_factory() as session:
            return {
                "message": "Categories fetched successfully",
                "data": await queries.list_categories(session),
            }

    @app.get("/api/v1/categories/{category_id}")
    async def get_category(category_id: int, request: Request):
        async with container_of(request).session_factory() as session:
            category = await queries.get_category(session, category_id)
        if category is None:
            raise NotFound("Category not found")
        return {"message": "Category fetched successfully", "data": category}

    # ── Products ─────────────────────────────────────

    @app.post("/api/v1/products", status_code=201)
    async def create_product(req: CreateProductRequest, request: Request):
        async with container_of(request).session_factory() as session:
            product = await commands.create_product(session, **req.model_dump())
        return {"message": "Product created successfully", "data": product}

    @app.get("/api/v1/products")
    async def list_products(
        request: Request,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        sort_by: str = "id",
        sort_order: str = "asc",
        category_id: int | None = None,
    ):
        page, limit = max(page, 1), min(max(limit, 1), 100)
        async with container_of(request).session_factory() as session:
            products, total = await queries.list_products(
                session, page, limit, search, sort_by, sort_order, category_id
            )
        return {
            "message": "Products fetched successfully",
            "data": {
                "products": products,
                "pagination": {"page": page, "limit": limit, "total_count": total},
            },
        }

    @app.get("/api/v1/products/barcode/{barcode}")
    async def get_product_by_barcode(barcode: str, request: Request):
        async with container_of(request).session_factory() as session:
            product = await queries.get_product_by_barcode(session, barcode)
        if product is None:
            raise NotFound("Product not found")
        return {"message": "Product fetched successfully", "data": product}

    @app.get("/api/v1/products/{product_id}")
    async def get_product(product_id: int, request: Request):
        async with container_of(request).session_factory() as session:
            product = await queries.get_product(session, product_id)
        if product is None:
            raise NotFound("Product not found")
        return {"message": "Product fetched successfully", "data": product}

    return app


app = create_app()
