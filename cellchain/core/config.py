"""
Ledger configuration parameters for cellchain.

Defines envelope limits, fee/dust economics, cost-estimate policy and the
derivation roots used for wallet and per-cell keys.

Overrides come from a JSON file and ``CELLCHAIN_*`` environment variables
(optionally from a ``.env`` file); the environment wins over the file.
"""

import json
import os
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cellchain.errors import ConfigurationError


ENV_PREFIX = "CELLCHAIN_"

NETWORKS = ("mainnet", "testnet")


@dataclass(frozen=True)
class LedgerConfig:
    """Library-wide configuration parameters"""

    # Envelope parameters
    chunk_size: int = 220  # Max bytes per data-carrier output
    max_payload_bytes: int = 1_000_000  # Hard limit for a single payload

    # Fee parameters
    default_fee_rate: float = 50  # Units per byte
    dust_threshold: int = 546  # Change at or below this is folded into the fee
    chain_marker_value: int = 546  # Value of the per-entity chain output
    inscription_value: int = 1  # Value carried by an inscription output

    # Cost estimate policy
    fixed_overhead_bytes: int = 500  # Transaction structure overhead
    units_per_coin: int = 100_000_000
    cost_cap: Decimal = Decimal("0.01")  # Fiat cap shown before saving

    # Keys and addresses
    network: str = "mainnet"
    root_prefix: str = "m/44'/236'/0'"  # Per-cell paths hang below this
    wallet_root_path: str = "m/44'/236'/0'/0/0"

    def __post_init__(self):
        """Validate parameter ranges"""
        if self.chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.max_payload_bytes < 0:
            raise ConfigurationError("max_payload_bytes cannot be negative")
        if self.default_fee_rate < 0:
            raise ConfigurationError("default_fee_rate cannot be negative")
        if self.dust_threshold < 0:
            raise ConfigurationError("dust_threshold cannot be negative")
        if self.chain_marker_value < 1 or self.inscription_value < 1:
            raise ConfigurationError("marker output values must be positive")
        if self.fixed_overhead_bytes < 0:
            raise ConfigurationError("fixed_overhead_bytes cannot be negative")
        if self.units_per_coin < 1:
            raise ConfigurationError("units_per_coin must be positive")
        if self.cost_cap < 0:
            raise ConfigurationError("cost_cap cannot be negative")
        if self.network not in NETWORKS:
            raise ConfigurationError(f"network must be one of {NETWORKS}, got {self.network!r}")


class _ConfigOverrides(BaseModel):
    """Schema for overrides read from files and the environment."""

    model_config = ConfigDict(extra="forbid")

    chunk_size: Optional[int] = Field(default=None, ge=1)
    max_payload_bytes: Optional[int] = Field(default=None, ge=0)
    default_fee_rate: Optional[float] = Field(default=None, ge=0)
    dust_threshold: Optional[int] = Field(default=None, ge=0)
    chain_marker_value: Optional[int] = Field(default=None, ge=1)
    inscription_value: Optional[int] = Field(default=None, ge=1)
    fixed_overhead_bytes: Optional[int] = Field(default=None, ge=0)
    units_per_coin: Optional[int] = Field(default=None, ge=1)
    cost_cap: Optional[Decimal] = Field(default=None, ge=0)
    network: Optional[str] = None
    root_prefix: Optional[str] = None
    wallet_root_path: Optional[str] = None


def _env_overrides(env: Dict[str, Optional[str]]) -> Dict[str, Any]:
    """Pick ``CELLCHAIN_<FIELD>`` entries out of an environment mapping."""
    names = {f.name for f in fields(LedgerConfig)}
    overrides = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX) or value is None:
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in names:
            overrides[name] = value
    return overrides


def load_config(
    config_path: Optional[str] = None,
    env_file: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> LedgerConfig:
    """
    Load configuration from a JSON file and the environment.

    Args:
        config_path: Optional path to a JSON file of overrides
        env_file: Optional ``.env`` file; its values yield to real env vars
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        LedgerConfig instance

    Raises:
        ConfigurationError: unreadable file or invalid override
    """
    overrides: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")
        overrides.update(raw)

    env: Dict[str, Optional[str]] = {}
    if env_file:
        env.update(dotenv_values(env_file))
    env.update(os.environ if environ is None else environ)
    overrides.update(_env_overrides(env))

    try:
        parsed = _ConfigOverrides.model_validate(overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    return replace(LedgerConfig(), **parsed.model_dump(exclude_none=True))
