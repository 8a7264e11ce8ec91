from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Route provider (LI.FI)
    lifi_base_url: str = Field(default="https://li.quest/v1", description="LI.FI API base URL")
    lifi_api_key: str = Field(
        default="",
        description="Optional LI.FI API key for higher rate limits",
        validation_alias=AliasChoices("lifi_api_key", "LIFI_API_KEY", "x_lifi_api_key"),
    )
    integrator: str = Field(default="bridgeflow", description="Integrator id attached to every provider call")
    integrator_fee: Optional[Decimal] = Field(
        default=None,
        ge=0,
        lt=1,
        description="Integrator fee fraction (e.g. 0.02 = 2%)",
    )
    provider_timeout_seconds: float = Field(default=20.0, gt=0, description="Route provider request timeout")

    # Route defaults
    default_slippage: Decimal = Field(default=Decimal("0.005"), ge=0, lt=1, description="Default slippage (0.5%)")
    default_order: str = Field(default="CHEAPEST", pattern="^(CHEAPEST|FASTEST)$")
    default_max_price_impact: Optional[Decimal] = Field(
        default=Decimal("0.01"),
        description="Quotes above this price impact are rejected",
    )
    quote_ttl_seconds: int = Field(default=60, ge=1, description="Seconds before a received quote is stale")
    max_requotes: int = Field(default=2, ge=0, description="Automatic re-quotes after an expired quote")

    # Chain RPC
    rpc_timeout_seconds: float = Field(default=15.0, gt=0, description="Per-call chain RPC timeout")
    rpc_max_retries: int = Field(default=3, ge=1, description="Attempts for a transient RPC failure")
    rpc_retry_initial_delay_seconds: float = Field(default=0.5, ge=0)
    polygon_rpc_url: str = Field(default="https://polygon-rpc.com", description="Polygon RPC endpoint")
    optimism_rpc_url: str = Field(default="https://mainnet.optimism.io", description="Optimism RPC endpoint")
    arbitrum_rpc_url: str = Field(default="https://arb1.arbitrum.io/rpc", description="Arbitrum RPC endpoint")
    ethereum_rpc_url: str = Field(default="https://eth.llamarpc.com", description="Ethereum RPC endpoint")
    base_rpc_url: str = Field(default="https://mainnet.base.org", description="Base RPC endpoint")

    # Tracking
    required_confirmations: int = Field(default=2, ge=1, description="Blocks before a step counts as confirmed")
    confirmation_timeout_seconds: int = Field(default=600, ge=1, description="Wait for inclusion before TIMED_OUT")
    poll_interval_seconds: float = Field(default=5.0, gt=0, description="Status polling interval")
    grace_multiplier: float = Field(
        default=3.0,
        ge=1,
        description="Destination leg may take estimated duration x this before recovery kicks in",
    )
    max_tracking_seconds: int = Field(default=3600, ge=1, description="Hard stop for the tracking loop")

    # External collaborators
    signer_url: str = Field(default="", description="Remote signing service base URL")
    name_service_url: str = Field(default="", description="Name service base URL for recipient names")

    @property
    def has_lifi_key(self) -> bool:
        return bool(self.lifi_api_key)

    @property
    def has_signer(self) -> bool:
        return bool(self.signer_url)


# Global settings instance
settings = Settings()
