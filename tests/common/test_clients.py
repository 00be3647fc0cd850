import httpx
import pytest

from services.common import trust_token
from services.common.cache import LookupCache
from services.common.clients import CachedMerchantClient, MerchantClient, WarehouseClient
from services.common.errors import NotFound, UpstreamUnavailable
from services.common.kvstore import KeyValueStore


class TestInternalClient:
    async def test_calls_go_through_gateway_with_sentinel_and_token(self, settings, internal_client):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"id": 3, "name": "Toko", "keeper_id": 9}})

        merchant = await MerchantClient(internal_client(handler)).get_merchant(3)

        assert merchant.keeper_id == 9
        request = seen[0]
        assert str(request.url) == "http://gateway.test/api/v1/merchants/3"
        assert request.headers["X-Internal-Request"] == "true"
        assert request.headers["X-Gateway"] == settings.gateway_name
        token = request.headers["Authorization"].removeprefix("Bearer ")
        assert trust_token.verify(token, settings.jwt_secret_key).roles == trust_token.SYSTEM_ROLE

    async def test_404_maps_to_not_found_with_upstream_message(self, internal_client):
        def handler(request):
            return httpx.Response(404, json={"message": "Merchant not found"})

        with pytest.raises(NotFound, match="Merchant not found"):
            await MerchantClient(internal_client(handler)).get_merchant(1)

    async def test_server_error_maps_to_upstream_unavailable(self, internal_client):
        def handler(request):
            return httpx.Response(500, json={"message": "boom"})

        with pytest.raises(UpstreamUnavailable):
            await MerchantClient(internal_client(handler)).get_merchant(1)

    async def test_transport_error_maps_to_upstream_unavailable(self, internal_client):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamUnavailable, match="Service unavailable"):
            await MerchantClient(internal_client(handler)).get_merchant(1)

    async def test_unexpected_shape_maps_to_upstream_unavailable(self, internal_client):
        def handler(request):
            return httpx.Response(200, json={"data": {"unexpected": True}})

        with pytest.raises(UpstreamUnavailable):
            await MerchantClient(internal_client(handler)).get_merchant(1)


class TestStockLookups:
    async def test_merchant_stock_reads_matching_row(self, internal_client):
        def handler(request):
            assert request.url.params["merchant_id"] == "2"
            assert request.url.params["product_id"] == "5"
            return httpx.Response(200, json={"data": {"merchant_products": [
                {"id": 1, "merchant_id": 2, "product_id": 5, "stock": 12, "product_name": "Teh"},
            ]}})

        level = await MerchantClient(internal_client(handler)).get_stock(2, 5)
        assert (level.location_id, level.product_id, level.stock, level.product_name) == (2, 5, 12, "Teh")

    async def test_merchant_without_product_returns_none(self, internal_client):
        def handler(request):
            return httpx.Response(200, json={"data": {"merchant_products": []}})

        assert await MerchantClient(internal_client(handler)).get_stock(2, 5) is None

    async def test_row_of_another_merchant_is_ignored(self, internal_client):
        def handler(request):
            return httpx.Response(200, json={"data": {"merchant_products": [
                {"id": 3, "merchant_id": 7, "product_id": 5, "stock": 40},
            ]}})

        assert await MerchantClient(internal_client(handler)).get_stock(0, 5) is None

    async def test_warehouse_stock(self, internal_client):
        def handler(request):
            assert request.url.path == "/api/v1/warehouse-products/4/detail/5"
            return httpx.Response(200, json={"data": {"warehouse_id": 4, "product_id": 5, "stock": 30}})

        level = await WarehouseClient(internal_client(handler)).get_stock(4, 5)
        assert level.stock == 30

    async def test_stock_is_never_cached(self, fake_redis, internal_client):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            if request.url.path == "/api/v1/merchant-products":
                return httpx.Response(200, json={"data": {"merchant_products": [
                    {"merchant_id": 2, "product_id": 5, "stock": len(calls)},
                ]}})
            return httpx.Response(200, json={"data": {"id": 2, "name": "Toko", "keeper_id": 1}})

        client = CachedMerchantClient(internal_client(handler), LookupCache(KeyValueStore(fake_redis)))
        await client.get_merchant(2)
        await client.get_merchant(2)
        first = await client.get_stock(2, 5)
        second = await client.get_stock(2, 5)

        assert calls.count("/api/v1/merchants/2") == 1
        assert calls.count("/api/v1/merchant-products") == 2
        assert second.stock > first.stock
