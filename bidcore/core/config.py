"""
Market configuration parameters for bidcore.

Defines bidding increments, trust gates, concurrency bounds and paths.
Values can be overridden from a .env file or BIDCORE_* environment
variables via load_config().
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, model_validator

ENV_PREFIX = "BIDCORE_"


class MarketConfig(BaseModel):
    """Market-wide configuration parameters"""

    model_config = ConfigDict(validate_assignment=True)

    # Bid increments
    min_increment_rate: Decimal = Field(default=Decimal("0.05"), ge=0)  # 5% of current price
    min_increment: Decimal = Field(default=Decimal("1.00"), gt=0)  # Floor of the increment
    proxy_step: Decimal = Field(default=Decimal("1.00"), gt=0)  # Proxy raise above the leader

    # Trust gates
    min_trust_to_bid: float = Field(default=300.0, ge=0, le=1000)
    high_value_threshold: Decimal = Field(default=Decimal("1000.00"), gt=0)
    high_value_min_trust: float = Field(default=600.0, ge=0, le=1000)

    # Trust score formula
    trust_base: float = 500.0
    trust_success_weight: float = 300.0
    trust_failure_penalty: float = 10.0
    trust_min: float = 0.0
    trust_max: float = 1000.0

    # Concurrency
    max_commit_retries: int = Field(default=3, ge=0)  # Retries on version conflict
    retry_backoff_seconds: float = Field(default=0.01, ge=0)
    lock_timeout_seconds: float = Field(default=5.0, gt=0)

    # Auction sweep
    sweep_interval_seconds: float = Field(default=30.0, gt=0)

    # Paths
    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")
    log_to_file: bool = False  # Append to log_dir/bidcore.log
    db_name: str = "bidcore.db"

    @model_validator(mode="after")
    def _check_trust_bounds(self) -> "MarketConfig":
        if self.trust_min >= self.trust_max:
            raise ValueError("trust_min must be below trust_max")
        return self

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    def ensure_dirs(self) -> None:
        """Create data and log directories"""
        self.data_dir.mkdir(exist_ok=True, parents=True)
        self.log_dir.mkdir(exist_ok=True, parents=True)


def _collect_overrides(source) -> dict:
    overrides = {}
    for key, value in source.items():
        if value is None or not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in MarketConfig.model_fields:
            overrides[name] = value
    return overrides


def load_config(env_file: Optional[str] = None, **overrides) -> MarketConfig:
    """
    Load configuration from a .env file, the environment and keyword overrides.

    Later sources win: .env file, then process environment, then kwargs.

    Args:
        env_file: Optional path to a .env file with BIDCORE_* keys

    Returns:
        MarketConfig instance
    """
    values = {}
    if env_file:
        values.update(_collect_overrides(dotenv_values(env_file)))
    values.update(_collect_overrides(os.environ))
    values.update(overrides)
    return MarketConfig(**values)
