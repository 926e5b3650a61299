"""
Configuration management using pydantic-settings.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from walletcore.address import Network
from walletcore.constants import (
    DEFAULT_LEDGER_OUTPUT_CONSOLIDATION_THRESHOLD,
    DEFAULT_OUTPUT_CONSOLIDATION_THRESHOLD,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WALLETCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    network: Network = Network.MAINNET

    log_level: str = "INFO"

    # Name reported by the device when the wallet app is open
    ledger_app_name: str = "IOTA"
    ledger_confirm_timeout: float = Field(default=120.0, gt=0)
    ledger_app_timeout: float = Field(default=30.0, ge=0)
    ledger_poll_interval: float = Field(default=0.5, gt=0)

    # Speculos exposes the APDU socket on 9999 by default
    speculos_host: str = "127.0.0.1"
    speculos_port: int = 9999

    output_consolidation_threshold: int = Field(
        default=DEFAULT_OUTPUT_CONSOLIDATION_THRESHOLD, ge=1
    )
    ledger_output_consolidation_threshold: int = Field(
        default=DEFAULT_LEDGER_OUTPUT_CONSOLIDATION_THRESHOLD, ge=1
    )


def get_settings() -> Settings:
    return Settings()
