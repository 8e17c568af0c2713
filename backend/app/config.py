from typing import Dict, List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    FRONTEND_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # order lifecycle
    PAYMENT_TTL_MINUTES: int = 30
    MAX_PENDING_ORDERS_PER_USER: int = 3
    ORDER_EXPIRY_INTERVAL_SECONDS: int = 60
    SCHEDULER_ENABLED: bool = True

    # cart limits
    MAX_CART_ITEM_COUNT: int = 50
    CART_ITEM_MAX_QUANTITY: int = 99

    # money
    BASE_CURRENCY: str = "RUB"
    CURRENCY_MULTIPLIERS: Dict[str, int] = {"RUB": 100, "USD": 100, "EUR": 100}
    EXCHANGE_RATE_BASE_URL: str = "https://v6.exchangerate-api.com/v6/"
    EXCHANGE_RATE_API_KEY: str = "change-this-key"
    EXCHANGE_RATE_TTL_SECONDS: int = 86400
    EXCHANGE_RATE_TIMEOUT_SECONDS: float = 10.0

    # payment gateway
    PAYMENT_MOCK_DELAY_MS: int = 200
    PAYMENT_SESSION_TTL_MINUTES: int = 30
    CLIENT_URL: str = "http://localhost:3000"
    CLIENT_ORDERS_PATH: str = "/orders"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
