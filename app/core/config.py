import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # 数据库配置
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "123456")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = int(os.getenv("POSTGRES_PORT", "5432"))
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "shopdb")
    
    # Redis 配置
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))

    # 订单配置
    SHIPPING_FEE: int = int(os.getenv("SHIPPING_FEE", "30000"))
    FREE_SHIPPING_THRESHOLD: int = int(os.getenv("FREE_SHIPPING_THRESHOLD", "1000000"))
    UNPAID_ORDER_TIMEOUT_MINUTES: int = int(os.getenv("UNPAID_ORDER_TIMEOUT_MINUTES", "30"))
    ORDER_LOCK_TTL_MS: int = int(os.getenv("ORDER_LOCK_TTL_MS", "10000"))

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg://"
            f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

settings = Settings()
