from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables can come from:
    - docker-compose.yml environment section
    - .env file (for secrets like API keys)
    - System environment

    Variable names match docker-compose conventions:
    - POSTGRES_HOST, POSTGRES_PORT, etc. (for database)
    - NEYNAR_API_KEY (identity + cast lookups)
    - DUNE_API_KEY, DUNE_QUERY_ID (batch lockup source)
    """

    # Environment
    environment: str = "development"

    # PostgreSQL (from docker-compose)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "higher_user"
    postgres_password: str = "higher_pass"
    postgres_db: str = "higher"
    database_url: Optional[str] = None
    db_command_timeout_seconds: float = 30.0

    # Redis
    redis_url: str = "redis://localhost:6379"

    # Neynar (identity + content service)
    neynar_api_key: str = ""
    neynar_base_url: str = "https://api.neynar.com/v2/farcaster"
    neynar_address_batch_size: int = 350
    neynar_user_batch_size: int = 100

    # Dune (batch lockup source)
    dune_api_key: str = ""
    dune_base_url: str = "https://api.dune.com/api/v1"
    dune_query_id: int = 6214515
    dune_page_size: int = 1000
    dune_max_pages: int = 1000
    dune_amount_unit: str = "base"

    # Push events
    webhook_amount_unit: str = "base"

    # Chain
    token_address: str = "0x0578d8A44db98B23BF096A382e016e29a5Ce0ffe"
    lockup_contract: str = "0xA3dCf3Ca587D9929d540868c924f208726DC9aB6"

    # Price snapshot
    coingecko_url: str = "https://api.coingecko.com/api/v3/simple/token_price/base"

    # Content qualification
    marker_pattern: str = r"started\s+aiming\s+higher\s+and\s+it\s+worked\s+out!\s*(.+)"
    required_channel: str = "higher"

    # Reconciliation
    external_timeout_seconds: float = 10.0
    resolver_concurrency: int = 8
    sync_budget_seconds: float = 300.0
    sync_interval_seconds: int = 600

    # Scheduler auth (empty = not enforced)
    cron_secret: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra env vars

    @field_validator('dune_amount_unit', 'webhook_amount_unit', mode='before')
    @classmethod
    def check_amount_unit(cls, v):
        """Only 'base' (18-decimal base units) and 'token' (pre-scaled) are known"""
        v = str(v or 'base').strip().lower()
        if v not in ('base', 'token'):
            raise ValueError(f"amount unit must be 'base' or 'token', got {v!r}")
        return v

    @property
    def postgres_dsn(self) -> str:
        """DATABASE_URL if set, otherwise built from the POSTGRES_* components"""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
