"""
Core configuration for Strikerate.
Uses Pydantic Settings for environment variable management.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pydantic import model_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_env_values(cls, data):
        if not isinstance(data, dict):
            return data
        # Hosting platforms sometimes inject empty-string env vars.
        # Treat them as "unset" so typed fields (bool/int/float) don't crash on startup.
        return {key: value for key, value in data.items() if value != ""}

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/strikerate"

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Wallets
    # The only actor allowed to create, lock, complete and resettle matches.
    ADMIN_WALLET_ADDRESS: str = ""
    # Receives stakes and funds payouts.
    TREASURY_WALLET_ADDRESS: str = ""

    # Market economics
    PREDICTION_STAKE_AMOUNT: float = 2.0
    # Share of a market's pool paid out to winners; the rest is the platform fee.
    PRIZE_POOL_SHARE: float = 0.9

    # Settlement writes are chunked to stay under transaction size limits.
    SETTLEMENT_BATCH_SIZE: int = 400
    # How long a claim holds its lease while the payout transfer is in flight.
    CLAIM_LEASE_SECONDS: int = 300

    # Payment rail
    SOLANA_RPC_URL: str = "https://api.mainnet-beta.solana.com"
    USDC_MINT: str = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
    USDC_DECIMALS: int = 6
    PAYMENT_COMMITMENT: str = "confirmed"
    RPC_TIMEOUT_SECONDS: float = 15.0
    # Treasury payout signer. Builds, signs and confirms the SPL transfer.
    PAYOUT_SERVICE_URL: str = "http://localhost:8700"
    PAYOUT_SERVICE_TOKEN: str = ""
    PAYOUT_TIMEOUT_SECONDS: float = 60.0


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
