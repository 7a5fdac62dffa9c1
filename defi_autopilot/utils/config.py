"""Configuration management for DeFi Autopilot.

This module provides YAML configuration loading, the typed engine settings
derived from it, and environment overrides read from a ``.env`` file.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from defi_autopilot.utils.exceptions import ConfigurationError

ROOT_DIR = Path(__file__).parent.parent.parent
DEFAULT_CONFIG_PATH = ROOT_DIR / "config" / "default.yaml"


class Config:
    """Simple configuration loader and accessor.

    Loads YAML configuration files and provides dict-like access to settings.

    Example:
        >>> config = Config.from_file("config/default.yaml")
        >>> cooldown = config.get("engine.rebalance_cooldown", 3600)
    """

    def __init__(self, config_dict: Dict[str, Any]) -> None:
        self._config = config_dict

    @classmethod
    def from_file(cls, filepath: str | Path) -> "Config":
        """Load configuration from YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)

        return cls(config_dict or {})

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Example:
            >>> config.get("engine.max_gas_cost")
            100000
            >>> config.get("missing.key", "fallback")
            'fallback'
        """
        value = self._config

        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default

        return value

    def __getitem__(self, key: str) -> Any:
        value = self.get(key)
        if value is None:
            raise KeyError(f"Configuration key not found: {key}")
        return value

    def to_dict(self) -> Dict[str, Any]:
        return self._config.copy()


@dataclass(frozen=True)
class EngineSettings:
    """Tunable constants of the rebalancing engine.

    Currency values are integer cents, rates are integer basis points and
    durations are seconds.

    Attributes:
        min_deposit: Smallest initial deposit accepted ($100)
        default_protocol: Venue assigned to new portfolios
        default_yield_bps: Yield assigned to new portfolios
        min_yield_improvement_bps: New yield must exceed current by more than this
        profit_margin_numerator: Required profit = cost * numerator / denominator
        profit_margin_denominator: See above; 115/100 is a 15% margin
        max_gas_cost: Largest estimated cost a request may carry ($1,000)
        rebalance_cooldown: Minimum seconds between requests of one user
        max_staleness: Yield records older than this are not selectable
        max_apy_bps: Sanity ceiling on reported APY
        min_tvl: Smallest TVL accepted on a yield update ($1M)
        history_size: Archived records kept per venue
        batch_min_tvl: Liquidity floor used by batch optimization ($100M)
        base_cost: Base estimated cost of a venue switch ($3)
        complex_surcharge: Added once per leg on a complex venue ($1.50)
        complex_protocols: Venues whose legs carry the surcharge
        risk_ceilings: Risk profile name -> maximum venue risk score
        default_risk_ceiling: Ceiling for unknown profiles
    """

    min_deposit: int = 10_000
    default_protocol: str = "Aave"
    default_yield_bps: int = 320
    min_yield_improvement_bps: int = 50
    profit_margin_numerator: int = 115
    profit_margin_denominator: int = 100
    max_gas_cost: int = 100_000
    rebalance_cooldown: int = 3600
    max_staleness: int = 3600
    max_apy_bps: int = 5000
    min_tvl: int = 100_000_000
    history_size: int = 10
    batch_min_tvl: int = 10_000_000_000
    base_cost: int = 300
    complex_surcharge: int = 150
    complex_protocols: Tuple[str, ...] = ("Curve", "Uniswap")
    risk_ceilings: Dict[str, int] = field(
        default_factory=lambda: {"CONSERVATIVE": 3, "BALANCED": 5, "AGGRESSIVE": 8}
    )
    default_risk_ceiling: int = 5

    def __post_init__(self):
        """Validate settings."""
        if self.profit_margin_denominator <= 0:
            raise ConfigurationError(
                f"profit_margin_denominator must be positive, got {self.profit_margin_denominator}"
            )
        if self.profit_margin_numerator < self.profit_margin_denominator:
            raise ConfigurationError(
                "profit_margin_numerator must be >= profit_margin_denominator, "
                f"got {self.profit_margin_numerator}/{self.profit_margin_denominator}"
            )
        for name in (
            "min_deposit",
            "min_yield_improvement_bps",
            "max_gas_cost",
            "rebalance_cooldown",
            "max_staleness",
            "min_tvl",
            "batch_min_tvl",
            "base_cost",
            "complex_surcharge",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {getattr(self, name)}")
        if not 0 < self.max_apy_bps <= 100_000:
            raise ConfigurationError(f"max_apy_bps must be in (0, 100000], got {self.max_apy_bps}")
        if not 0 <= self.default_yield_bps <= self.max_apy_bps:
            raise ConfigurationError(
                f"default_yield_bps must be in [0, {self.max_apy_bps}], got {self.default_yield_bps}"
            )
        if self.history_size < 1:
            raise ConfigurationError(f"history_size must be >= 1, got {self.history_size}")
        for profile, ceiling in {**self.risk_ceilings, "default": self.default_risk_ceiling}.items():
            if not 1 <= ceiling <= 10:
                raise ConfigurationError(
                    f"risk ceiling for {profile} must be in [1, 10], got {ceiling}"
                )

    @classmethod
    def from_config(cls, config: Config, section: str = "engine") -> "EngineSettings":
        """Build settings from a config section, keeping defaults for missing keys.

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        values = config.get(section, {}) or {}
        if not isinstance(values, dict):
            raise ConfigurationError(f"'{section}' section must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown engine settings: {', '.join(unknown)}")

        kwargs = dict(values)
        if "complex_protocols" in kwargs:
            kwargs["complex_protocols"] = tuple(kwargs["complex_protocols"])
        if "risk_ceilings" in kwargs:
            kwargs["risk_ceilings"] = {
                str(k).upper(): int(v) for k, v in kwargs["risk_ceilings"].items()
            }
        return cls(**kwargs)


def load_config(filepath: str | Path = None) -> Config:
    """Load configuration, defaulting to ``config/default.yaml`` at the project root."""
    if filepath is None:
        filepath = DEFAULT_CONFIG_PATH
    return Config.from_file(filepath)


def load_environment(env_file: Optional[str | Path] = None) -> Dict[str, Optional[str]]:
    """Load ``.env`` overrides, if present, and return the autopilot variables.

    Variables:
        AUTOPILOT_ADMIN: Admin principal address
        AUTOPILOT_CONFIG: Path to the YAML config file
        AUTOPILOT_LOG_LEVEL: Logging level name
        AUTOPILOT_LOG_DIR: Directory for rotating log and audit files

    Returns:
        Dict with keys admin, config_path, log_level, log_dir (None when unset)
    """
    env_path = Path(env_file) if env_file is not None else ROOT_DIR / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return {
        "admin": os.getenv("AUTOPILOT_ADMIN"),
        "config_path": os.getenv("AUTOPILOT_CONFIG"),
        "log_level": os.getenv("AUTOPILOT_LOG_LEVEL"),
        "log_dir": os.getenv("AUTOPILOT_LOG_DIR"),
    }
