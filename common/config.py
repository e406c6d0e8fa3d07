from pydantic_settings import BaseSettings
from typing import List, Optional

from common.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings."""

    # Solana / network
    rpc_endpoint: str = "https://api.devnet.solana.com"
    rpc_endpoint_mainnet: str = ""
    rpc_endpoint_devnet: str = ""
    network: str = "devnet"  # devnet | mainnet | testnet
    verify_network: bool = False  # run the genesis hash check before each mint
    artist_wallet: str = ""

    # Minting backend
    minting_service_url: str = ""
    minting_service_token: str = ""
    minting_timeout: float = 120.0  # upload + confirmation can take a while
    max_supply: Optional[int] = None  # global cap, per-trigger maxSupply wins
    serialize_mints: bool = True  # one in-flight mint per trigger

    # Triggers / media
    triggers_file: str = "triggers.json"
    media_root: str = "."  # base for ./assets/... references
    assets_dir: str = "assets"
    public_base_url: str = ""
    execution_history_limit: int = 100

    # App Config
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: str = "http://localhost:3000"
    enable_prometheus: bool = True

    # Logging Config
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: str = "logs/minter.log"  # Log file path
    log_max_bytes: int = 10485760  # 10MB
    log_backup_count: int = 5  # Keep 5 backup files
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
    enable_file_logging: bool = True  # Enable logging to file
    enable_json_logging: bool = False  # Enable structured JSON logging

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def resolved_rpc_endpoint(self) -> str:
        """RPC endpoint for the declared network, falling back to rpc_endpoint."""
        network = self.network.lower().strip()
        if network == "mainnet" and self.rpc_endpoint_mainnet:
            return self.rpc_endpoint_mainnet
        if network == "devnet" and self.rpc_endpoint_devnet:
            return self.rpc_endpoint_devnet
        return self.rpc_endpoint


def validate_minting_settings(config: Settings) -> None:
    """Fail fast when the minting pipeline cannot possibly work."""
    missing = []
    if not config.resolved_rpc_endpoint:
        missing.append("RPC_ENDPOINT")
    if not config.artist_wallet:
        missing.append("ARTIST_WALLET")
    if not config.minting_service_url:
        missing.append("MINTING_SERVICE_URL")
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    if config.network.lower().strip() not in ("devnet", "mainnet", "testnet"):
        raise ConfigurationError(f"Unknown network '{config.network}'")
    if config.max_supply is not None and config.max_supply < 0:
        raise ConfigurationError("MAX_SUPPLY must be >= 0")


settings = Settings()
