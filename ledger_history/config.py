from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Database
    POSTGRES_USER: str = "ledger"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DB: str = "ledger_history"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Overrides POSTGRES_* when set

    # Redis
    REDIS_URL: str = "redis://localhost:6379"
    INBOUND_STREAM: str = "event.transaction.ledger.registered"
    CONSUMER_GROUP: str = "ledger-history-consumer"
    DLQ_STREAM: str = "event.transaction.ledger.dlq"
    PRODUCER_STREAM: str = "event.history"

    # Ledger
    LEDGER_RPC_URL: str = "http://localhost:8545"
    LEDGER_TIMEOUT_SECONDS: float = 30.0
    MAX_RETRIES: int = 3

    # Reconciliation
    ENABLE_STRICT_VERIFICATION: bool = True
    FRESHNESS_WINDOW_SECONDS: int = 3600
    RECONCILE_MAX_WORKERS: int = 4

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8081

    # CORS
    ALLOWED_ORIGINS: List[str] = ["*"]

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "allow"  # Allow extra environment variables

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
