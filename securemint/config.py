"""
Configuration module for Secure Mint.

Process settings come from environment variables. Deployment topology
(ledger addresses, destination chains, reserve sources, precision) comes
from a JSON workflow configuration file validated on load.
"""

import json
import os
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError
from .instruction import is_address, normalize_address

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("SECUREMINT_ENV", "dev")  # dev|stage|prod

CONFIG_PATH = os.getenv("SECUREMINT_CONFIG_PATH", "config.json")

# Timeout for every external call (seconds)
HTTP_TIMEOUT = float(os.getenv("SECUREMINT_HTTP_TIMEOUT", "10"))

RESERVE_MIN_SOURCES = int(os.getenv("SECUREMINT_RESERVE_MIN_SOURCES", "1"))

LEDGER_SERVICE_URL = os.getenv("SECUREMINT_LEDGER_SERVICE_URL", "http://localhost:8088")

LOG_LEVEL = os.getenv("SECUREMINT_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("SECUREMINT_LOG_JSON", "1").lower() in ("1", "true", "yes")

IDEMPOTENCY_ENABLED = os.getenv("SECUREMINT_IDEMPOTENCY", "").lower() in ("1", "true", "yes")

BASKET_REGISTRY_PATH = os.getenv("SECUREMINT_BASKET_REGISTRY_PATH", "data/baskets.json")

DEFAULT_POLICY_REJECTION_MARKERS = ["PolicyRunRejected", "blacklisted", "rejected by policy"]


# ============================================================
# Workflow Configuration
# ============================================================

def _checked_address(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not is_address(value):
        raise ValueError(f"not a well-formed address: {value!r}")
    return normalize_address(value)


class SourceChainConfig(BaseModel):
    """Ledger on which the asset is issued."""
    model_config = ConfigDict(extra="forbid")

    stablecoin_address: str
    minting_consumer_address: str
    bridge_consumer_address: str
    basket_factory_address: Optional[str] = None
    chain_selector: int = Field(ge=0)

    @field_validator(
        "stablecoin_address",
        "minting_consumer_address",
        "bridge_consumer_address",
        "basket_factory_address"
    )
    @classmethod
    def _address(cls, value: Optional[str]) -> Optional[str]:
        return _checked_address(value)


class DestinationChainConfig(BaseModel):
    """Ledger reachable through the bridge consumer."""
    model_config = ConfigDict(extra="forbid")

    chain_selector: int = Field(ge=0, lt=2 ** 64)
    stablecoin_address: Optional[str] = None

    @field_validator("stablecoin_address")
    @classmethod
    def _address(cls, value: Optional[str]) -> Optional[str]:
        return _checked_address(value)


class WorkflowConfig(BaseModel):
    """Validated deployment configuration for one workflow instance."""
    model_config = ConfigDict(extra="forbid")

    source_chain: SourceChainConfig
    destination_chains: Dict[str, DestinationChainConfig] = Field(default_factory=dict)
    reserve_sources: List[str] = Field(min_length=1)
    static_reserve: Optional[Decimal] = None
    decimals: int = Field(default=18, ge=0, le=36)
    min_reserve_sources: int = Field(default=RESERVE_MIN_SOURCES, ge=1)
    mint_gas_limit: int = Field(default=500_000, gt=0)
    bridge_gas_limit: int = Field(default=1_000_000, gt=0)
    create_basket_gas_limit: int = Field(default=5_000_000, gt=0)
    policy_rejection_markers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_POLICY_REJECTION_MARKERS),
        min_length=1
    )
    http_timeout_seconds: float = Field(default=HTTP_TIMEOUT, gt=0)

    @model_validator(mode="after")
    def _check_reserve_quorum(self) -> "WorkflowConfig":
        if self.min_reserve_sources > len(self.reserve_sources):
            raise ValueError(
                f"min_reserve_sources ({self.min_reserve_sources}) exceeds "
                f"number of reserve_sources ({len(self.reserve_sources)})"
            )
        uses_file = any(s.startswith("file://") for s in self.reserve_sources)
        if uses_file and self.static_reserve is None:
            raise ValueError("static_reserve is required when a file:// reserve source is configured")
        return self

    def destination_selector(self, chain_name: str) -> Optional[int]:
        """Chain selector for a destination name, or None if unknown."""
        chain = self.destination_chains.get(chain_name)
        return chain.chain_selector if chain else None


def workflow_config_from_dict(data: dict) -> WorkflowConfig:
    """Validate a decoded configuration mapping."""
    try:
        return WorkflowConfig.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise ConfigurationError(f"Invalid workflow configuration at {loc or '<root>'}: {first.get('msg')}")


def load_workflow_config(path: Optional[str] = None) -> WorkflowConfig:
    """
    Load and validate the workflow configuration file.

    Raises:
        ConfigurationError: when the file is missing, unreadable or invalid
    """
    path = path or CONFIG_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Workflow configuration not found: {path}")
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read workflow configuration {path}: {e}")

    return workflow_config_from_dict(data)


def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"
