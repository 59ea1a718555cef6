"""Relay configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from eth_account import Account
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

from shared.logging import LogFormat
from shared.validators import StringListEnvSettingsSource, is_address, parse_proxy_list, parse_string_list

if TYPE_CHECKING:
    from pydantic import ValidationInfo
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class RelaySettings(BaseSettings):
    model_config = {"env_prefix": "RELAY_", "populate_by_name": True}

    rpc_url: str = Field(default="https://carrot.megaeth.com/rpc", min_length=1)
    chain_id: int = Field(default=6343, ge=1)
    contract_address: str = "0x6d32B9c3d539b2066b2b44915e09CDe94673bA5b"

    # Read from OPERATOR_PRIVATE_KEY (not RELAY_OPERATOR_PRIVATE_KEY) to match the
    # deployment environment shared with the contract tooling.
    operator_private_key: SecretStr = Field(validation_alias="OPERATOR_PRIVATE_KEY", min_length=1)

    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=8080, ge=1, le=65535)
    service_name: str = Field(default="MegaRally", min_length=1)
    log_dir: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        validation_alias=AliasChoices("RELAY_LOG_LEVEL", "LOG_LEVEL"),
    )
    log_format: LogFormat = Field(default="console", validation_alias=AliasChoices("RELAY_LOG_FORMAT", "LOG_FORMAT"))
    cors_origins: list[str] = ["http://localhost:3000"]
    trusted_proxies: list[str] = []
    forwarded_for_header: str = Field(default="x-forwarded-for", min_length=1)

    max_connections: int = Field(default=500, ge=1)
    max_connections_per_origin: int = Field(default=10, ge=1)
    max_message_bytes: int = Field(default=4096, ge=256)
    auth_timeout_seconds: float = Field(default=30.0, gt=0)

    rate_limit_window_seconds: float = Field(default=1.0, gt=0)
    rate_limit_max_actions: int = Field(default=10, ge=1)

    attempts_per_ticket: int = Field(default=3, ge=1)
    max_session_duration_ms: int = Field(default=600_000, ge=1000)
    stale_session_grace_ms: int = Field(default=30_000, ge=0)
    min_obstacle_interval_ms: int = Field(default=200, ge=0)

    tx_timeout_seconds: float = Field(default=30.0, gt=0)
    receipt_timeout_seconds: float = Field(default=20.0, gt=0)
    tx_gas_limit: int = Field(default=500_000, ge=21_000)

    stale_sweep_interval_seconds: float = Field(default=30.0, gt=0)
    tournament_close_interval_seconds: float = Field(default=30.0, gt=0)
    fee_claim_interval_seconds: float = Field(default=300.0, gt=0)
    balance_check_interval_seconds: float = Field(default=300.0, gt=0)
    min_operator_balance_wei: int = Field(default=10**16, ge=0)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @field_validator("trusted_proxies", mode="before")
    @classmethod
    def validate_trusted_proxies(cls, v: str | list[str]) -> list[str]:
        return parse_proxy_list(v)

    @field_validator("log_level", "log_format", mode="before")
    @classmethod
    def normalize_case(cls, v: object, info: ValidationInfo) -> object:
        if not isinstance(v, str):
            return v
        return v.upper() if info.field_name == "log_level" else v.lower()

    @field_validator("contract_address")
    @classmethod
    def validate_contract_address(cls, v: str) -> str:
        if not is_address(v):
            raise ValueError("contract_address must be a 0x-prefixed 20-byte hex address")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings

    @property
    def operator_address(self) -> str:
        """Checksummed address of the operator key."""
        return Account.from_key(self.operator_private_key.get_secret_value()).address

    def log_fields(self) -> dict[str, object]:
        """Static fields stamped on every log record of this process."""
        return {"service": self.service_name, "chain_id": self.chain_id, "operator": self.operator_address}
