from decimal import Decimal
from functools import lru_cache
import json
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_cors_origins(value: str) -> list[str]:
    if not value:
        return []

    parsed: list[str]
    raw = value.strip()
    if raw.startswith("["):
        try:
            items = json.loads(raw)
            parsed = [str(item).strip() for item in items if str(item).strip()]
        except (TypeError, ValueError):
            parsed = []
    else:
        parsed = [origin.strip() for origin in raw.split(",") if origin.strip()]

    # Preserve order and remove duplicates.
    return list(dict.fromkeys(parsed))


class Settings(BaseSettings):
    app_name: str = "Lounge Wallet"
    environment: str = "development"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Security
    secret_key: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Database
    database_url: str
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_timeout: int = 15
    db_pool_recycle: int = 1200
    db_pool_pre_ping: bool = True
    db_statement_timeout_ms: int = 15000

    # Paystack (card/bank gateway)
    paystack_secret_key: str
    paystack_webhook_secret: Optional[str] = None
    paystack_base_url: str = "https://api.paystack.co"
    paystack_timeout_seconds: int = 15
    paystack_currency: str = "NGN"

    # Monnify (virtual accounts)
    monnify_api_key: str
    monnify_secret_key: str
    monnify_contract_code: str
    monnify_base_url: str = "https://sandbox.monnify.com"
    monnify_currency: str = "NGN"
    monnify_timeout_seconds: int = 20

    # Settlement
    settlement_lock_timeout_seconds: float = 20
    loyalty_points_divisor: int = 100
    min_top_up_amount: Decimal = Decimal("1000")
    reconcile_on_startup: bool = True

    # Frontend return URL handed to the gateway
    payment_callback_url: str = "loungewallet://wallet"

    # CORS
    cors_origins: str = "http://localhost:8081,http://localhost:19006"
    auto_create_tables: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
