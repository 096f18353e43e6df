# app/core/config.py

from pathlib import Path
from typing import List
from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the project root directory (where .env should be located)
BASE_DIR = Path(__file__).resolve().parent.parent.parent


class VaultConfig(BaseModel):
    """
    One vault contract on one network. Each scanner job and event source is
    built from one of these and receives it explicitly.
    """
    network: str
    chain_id: int
    rpc_url: str
    vault_address: str
    token_symbol: str
    start_block: int = 0
    max_block_range: int = 2_000

    @field_validator("vault_address", "network")
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.lower()

    @property
    def key(self) -> str:
        return f"{self.network}:{self.vault_address}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra="ignore"
    )

    # App Configuration
    APP_NAME: str = "Savings Vault Ledger API"
    DEBUG: bool = False
    VERSION: str = "1.0.0"

    # Database Configuration
    DATABASE_URL: str = "sqlite+aiosqlite:///./vault_ledger.db"

    # JWT / Security Configuration
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080

    # CORS Configuration
    FRONTEND_URL: str = "http://localhost:3000"

    # Vault scanning
    VAULTS: List[VaultConfig] = []
    ENABLE_VAULT_MONITOR: bool = False
    SCAN_INTERVAL_SECONDS: int = 60
    SCAN_MAX_RETRIES: int = 5
    SCAN_RETRY_BASE_DELAY: float = 1.0
    RPC_TIMEOUT_SECONDS: float = 20.0

    # Ledger rules
    GROUP_MAX_MEMBERS: int = 50
    QUICK_SAVE_INTEREST_RATE: float = 5.0
    DEFAULT_GOAL_INTEREST_RATE: float = 5.0

    # Price oracle (USD per whole token, keyed by lower-cased token address)
    ORACLE_MAX_AGE_SECONDS: int = 3600
    ORACLE_USD_RATES: dict = {}

    # Optional: Environment
    ENVIRONMENT: str = "development"

    @property
    def is_sqlite(self) -> bool:
        """Check if we're running against SQLite (local dev and tests)"""
        return self.DATABASE_URL.startswith("sqlite")


# Create a global settings instance
settings = Settings()
