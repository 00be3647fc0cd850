"""
Common — typed clients for other services

Read operations other services need during checkout, stock allocation and
dashboards. Every call is an authenticated internal request (InternalClient)
and failures surface to the caller unretried.

The Cached* variants put metadata (products, merchants, warehouses) behind
the TTL cache. Stock levels are never cached: they must be read live.
"""

import logging

from pydantic import BaseModel, ValidationError

from .cache import LookupCache
from .errors import UpstreamUnavailable
from .http_client import InternalClient

logger = logging.getLogger(__name__)


class ProductInfo(BaseModel):
    id: int
    name: str
    barcode: str = ""
    price: int = 0
    category_id: int | None = None


class MerchantInfo(BaseModel):
    id: int
    name: str
    keeper_id: int
    address: str = ""
    phone: str = ""


class WarehouseInfo(BaseModel):
    id: int
    name: str
    address: str = ""
    phone: str = ""


class StockLevel(BaseModel):
    location_id: int
    product_id: int
    stock: int
    product_name: str = ""


class UserInfo(BaseModel):
    id: int
    email: str
    roles: list[str] = []


def _parse(model: type[BaseModel], body: dict, path: str):
    try:
        return model.model_validate(body["data"])
    except (KeyError, TypeError, ValidationError) as e:
        logger.error("[Clients] unexpected response shape from %s: %s", path, e)
        raise UpstreamUnavailable(f"Unexpected response from {path}") from e


class ProductClient:
    def __init__(self, http: InternalClient) -> None:
        self.http = http

    async def get_product(self, product_id: int) -> ProductInfo:
        path = f"/api/v1/products/{product_id}"
        return _parse(ProductInfo, await self.http.get_json(path), path)

    async def get_product_by_barcode(self, barcode: str) -> ProductInfo:
        path = f"/api/v1/products/barcode/{barcode}"
        return _parse(ProductInfo, await self.http.get_json(path), path)


class CachedProductClient(ProductClient):
    def __init__(self, http: InternalClient, cache: LookupCache) -> None:
        super().__init__(http)
        self.cache = cache

    async def get_product(self, product_id: int) -> ProductInfo:
        async def load() -> dict:
            return (await super(CachedProductClient, self).get_product(product_id)).model_dump()

        return ProductInfo.model_validate(await self.cache.get_or_load("product", product_id, load))

    async def get_product_by_barcode(self, barcode: str) -> ProductInfo:
        async def load() -> dict:
            return (await super(CachedProductClient, self).get_product_by_barcode(barcode)).model_dump()

        return ProductInfo.model_validate(await self.cache.get_or_load("product_barcode", barcode, load))


class WarehouseClient:
    def __init__(self, http: InternalClient) -> None:
        self.http = http

    async def get_warehouse(self, warehouse_id: int) -> WarehouseInfo:
        path = f"/api/v1/warehouses/{warehouse_id}"
        return _parse(WarehouseInfo, await self.http.get_json(path), path)

    async def get_stock(self, warehouse_id: int, product_id: int) -> StockLevel:
        """Live stock of one product in one warehouse (NotFound when it has no entry)."""
        path = f"/api/v1/warehouse-products/{warehouse_id}/detail/{product_id}"
        body = await self.http.get_json(path)
        try:
            data = body["data"]
            return StockLevel(
                location_id=int(data["warehouse_id"]),
                product_id=int(data["product_id"]),
                stock=int(data["stock"]),
                product_name=data.get("product_name", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error("[WarehouseClient] get_stock - unexpected response: %s", e)
            raise UpstreamUnavailable(f"Unexpected response from {path}") from e


class CachedWarehouseClient(WarehouseClient):
    def __init__(self, http: InternalClient, cache: LookupCache) -> None:
        super().__init__(http)
        self.cache = cache

    async def get_warehouse(self, warehouse_id: int) -> WarehouseInfo:
        async def load() -> dict:
            return (await super(CachedWarehouseClient, self).get_warehouse(warehouse_id)).model_dump()

        return WarehouseInfo.model_validate(await self.cache.get_or_load("warehouse", warehouse_id, load))


class MerchantClient:
    def __init__(self, http: InternalClient) -> None:
        self.http = http

    async def get_merchant(self, merchant_id: int) -> MerchantInfo:
        path = f"/api/v1/merchants/{merchant_id}"
        return _parse(MerchantInfo, await self.http.get_json(path), path)

    async def get_stock(self, merchant_id: int, product_id: int) -> StockLevel | None:
        """Live stock of one product at one merchant; None when the merchant does not carry it."""
        path = "/api/v1/merchant-products"
        body = await self.http.get_json(
            path, params={"merchant_id": merchant_id, "product_id": product_id}
        )
        try:
            rows = body["data"]["merchant_products"]
        except (KeyError, TypeError) as e:
            raise UpstreamUnavailable(f"Unexpected response from {path}") from e

        for row in rows:
            if (
                int(row.get("merchant_id", -1)) == merchant_id
                and int(row.get("product_id", -1)) == product_id
            ):
                return StockLevel(
                    location_id=merchant_id,
                    product_id=product_id,
                    stock=int(row["stock"]),
                    product_name=row.get("product_name", ""),
                )
        return None


class CachedMerchantClient(MerchantClient):
    def __init__(self, http: InternalClient, cache: LookupCache) -> None:
        super().__init__(http)
        self.cache = cache

    async def get_merchant(self, merchant_id: int) -> MerchantInfo:
        async def load() -> dict:
            return (await super(CachedMerchantClient, self).get_merchant(merchant_id)).model_dump()

        return MerchantInfo.model_validate(await self.cache.get_or_load("merchant", merchant_id, load))


class UserClient:
    def __init__(self, http: InternalClient) -> None:
        self.http = http

    async def get_user(self, user_id: int) -> UserInfo:
        path = f"/api/v1/users/{user_id}"
        return _parse(UserInfo, await self.http.get_json(path), path)
