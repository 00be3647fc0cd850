"""
Common — environment configuration

Every service reads its configuration from the environment once at start-up.
Values that a given service does not use are simply ignored by it.
"""

import os

from pydantic import BaseModel


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    service_name: str = "service"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///:memory:"
    redis_url: str = "redis://localhost:6379"
    api_gateway_url: str = "http://localhost:8080"

    # sentinel header pair + internal trust token
    gateway_name: str = "warehouse-api-gateway"
    jwt_secret_key: str = "your-secret-key-change-this-in-production"
    jwt_issuer: str = "warehouse-api-gateway"
    jwt_duration_hours: int = 1
    user_jwt_duration_minutes: int = 60
    gateway_verify_internal_token: bool = False

    # gateway upstreams
    user_service_url: str = "http://localhost:8081"
    product_service_url: str = "http://localhost:8082"
    warehouse_service_url: str = "http://localhost:8083"
    merchant_service_url: str = "http://localhost:8084"
    transaction_service_url: str = "http://localhost:8085"

    # fixed-window rate limits
    rate_limit_window_seconds: int = 60
    rate_limit_global_max: int = 100
    rate_limit_auth_max: int = 10
    rate_limit_api_max: int = 60
    # peers whose X-Forwarded-For is believed; everyone else is keyed on its own address
    trusted_proxies: list[str] = []

    http_timeout_seconds: float = 30.0
    cache_ttl_seconds: int = 3600

    event_exchange: str = "business_events"
    outbox_poll_seconds: float = 1.0
    consumer_reclaim_idle_ms: int = 30_000

    midtrans_server_key: str = ""
    midtrans_is_production: bool = False
    midtrans_verify_signature: bool = True

    # user service start-up seed; the manager account is created only when a password is set
    seed_manager_email: str = "manager@mail.com"
    seed_manager_password: str = ""

    @classmethod
    def from_env(cls, service_name: str) -> "Settings":
        defaults = cls()
        return cls(
            service_name=service_name,
            log_level=os.environ.get("LOG_LEVEL", defaults.log_level),
            database_url=os.environ.get("DATABASE_URL", defaults.database_url),
            redis_url=os.environ.get("REDIS_URL", defaults.redis_url),
            api_gateway_url=os.environ.get("API_GATEWAY_URL", defaults.api_gateway_url),
            gateway_name=os.environ.get("GATEWAY_NAME", defaults.gateway_name),
            jwt_secret_key=os.environ.get("JWT_SECRET_KEY", defaults.jwt_secret_key),
            jwt_issuer=os.environ.get("JWT_ISSUER", defaults.jwt_issuer),
            jwt_duration_hours=int(
                os.environ.get("JWT_DURATION_HOURS", defaults.jwt_duration_hours)
            ),
            user_jwt_duration_minutes=int(
                os.environ.get(
                    "USER_JWT_DURATION_MINUTES", defaults.user_jwt_duration_minutes
                )
            ),
            gateway_verify_internal_token=_env_bool(
                "GATEWAY_VERIFY_INTERNAL_TOKEN", defaults.gateway_verify_internal_token
            ),
            user_service_url=os.environ.get("USER_SERVICE_URL", defaults.user_service_url),
            product_service_url=os.environ.get(
                "PRODUCT_SERVICE_URL", defaults.product_service_url
            ),
            warehouse_service_url=os.environ.get(
                "WAREHOUSE_SERVICE_URL", defaults.warehouse_service_url
            ),
            merchant_service_url=os.environ.get(
                "MERCHANT_SERVICE_URL", defaults.merchant_service_url
            ),
            transaction_service_url=os.environ.get(
                "TRANSACTION_SERVICE_URL", defaults.transaction_service_url
            ),
            rate_limit_window_seconds=int(
                os.environ.get(
                    "RATE_LIMIT_WINDOW_SECONDS", defaults.rate_limit_window_seconds
                )
            ),
            rate_limit_global_max=int(
                os.environ.get("RATE_LIMIT_GLOBAL_MAX", defaults.rate_limit_global_max)
            ),
            rate_limit_auth_max=int(
                os.environ.get("RATE_LIMIT_AUTH_MAX", defaults.rate_limit_auth_max)
            ),
            rate_limit_api_max=int(
                os.environ.get("RATE_LIMIT_API_MAX", defaults.rate_limit_api_max)
            ),
            trusted_proxies=[
                p.strip()
                for p in os.environ.get("TRUSTED_PROXIES", "").split(",")
                if p.strip()
            ],
            http_timeout_seconds=float(
                os.environ.get("HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds)
            ),
            cache_ttl_seconds=int(
                os.environ.get("CACHE_TTL_SECONDS", defaults.cache_ttl_seconds)
            ),
            event_exchange=os.environ.get("EVENT_EXCHANGE", defaults.event_exchange),
            outbox_poll_seconds=float(
                os.environ.get("OUTBOX_POLL_SECONDS", defaults.outbox_poll_seconds)
            ),
            consumer_reclaim_idle_ms=int(
                os.environ.get(
                    "CONSUMER_RECLAIM_IDLE_MS", defaults.consumer_reclaim_idle_ms
                )
            ),
            midtrans_server_key=os.environ.get(
                "MIDTRANS_SERVER_KEY", defaults.midtrans_server_key
            ),
            midtrans_is_production=_env_bool(
                "MIDTRANS_IS_PRODUCTION", defaults.midtrans_is_production
            ),
            midtrans_verify_signature=_env_bool(
                "MIDTRANS_VERIFY_SIGNATURE", defaults.midtrans_verify_signature
            ),
            seed_manager_email=os.environ.get(
                "SEED_MANAGER_EMAIL", defaults.seed_manager_email
            ),
            seed_manager_password=os.environ.get(
                "SEED_MANAGER_PASSWORD", defaults.seed_manager_password
            ),
        )
