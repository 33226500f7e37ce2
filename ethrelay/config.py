from pydantic import validator
from pydantic_settings import BaseSettings
from typing import Optional, Dict, Any


class Settings(BaseSettings):
    # Database
    DB_USER: str = "user"
    DB_PASSWORD: str = "password"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "eth_relay"
    DATABASE_URL: Optional[str] = None

    @validator("DATABASE_URL", pre=True, always=True)
    def assemble_db_connection(cls, v: Optional[str], values: Dict[str, Any]) -> Any:
        if isinstance(v, str):
            return v
        return (
            f"postgresql+psycopg2://{values.get('DB_USER')}:{values.get('DB_PASSWORD')}@"
            f"{values.get('DB_HOST')}:{values.get('DB_PORT')}/{values.get('DB_NAME')}"
        )

    # Ethereum JSON-RPC
    ETH_RPC_URL: str = "http://localhost:8545"
    ETH_RPC_TIMEOUT: float = 30.0
    CHAIN_ID: Optional[int] = None  # None signs legacy pre-EIP-155 transactions

    # Scanner timings (seconds)
    SCAN_INTERVAL: float = 1.0
    TIP_POLL_INTERVAL: float = 4.0
    TIP_WAIT_TIMEOUT: Optional[float] = None  # None waits for the tip forever

    # "Block not found" retry policy, None attempts means retry forever
    BLOCK_FETCH_MAX_ATTEMPTS: Optional[int] = None
    BLOCK_FETCH_BASE_DELAY: float = 0.5
    BLOCK_FETCH_MAX_DELAY: float = 30.0

    # Reorg handling
    MAX_FORK_DEPTH: int = 1000
    ANCESTOR_FETCH_MAX_ATTEMPTS: int = 10

    # Performance
    DB_POOL_SIZE: int = 5

    # Monitoring
    LOG_LEVEL: str = "INFO"

    # Error handling
    MAX_RETRIES: int = 3
    RETRY_DELAY: int = 5

    # Wallets
    KEYSTORE_DIR: str = "./keystores"

    # API
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8083

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
