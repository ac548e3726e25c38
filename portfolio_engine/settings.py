from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

CONFIG_ENV_VAR = "PORTFOLIO_ENGINE_CONFIG"


class QCSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    aum_tolerance: float = Field(default=0.01, description="Allowed AUM identity difference (currency units)")
    max_daily_return: float = 0.50
    min_daily_return: float = -0.50
    quantity_tolerance: float = Field(default=0.001, description="Allowed share difference when reconciling positions")
    cost_tolerance: float = Field(default=0.01, description="Allowed average-cost difference when reconciling positions")


class EngineSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    currency_places: int = Field(default=2, ge=2, description="Fractional digits kept for currency amounts")
    return_places: int = Field(default=10, ge=4, description="Fractional digits kept for returns and allocations")
    trading_days_per_year: int = 252
    calendar_days_per_year: int = 365
    risk_free_rate: float = Field(default=0.0, description="Annual risk-free rate used by the Sharpe ratio")
    # Observation count below which annualized == total.
    min_annualization_days: int = 2
    # Gross-of-fee returns: treat FEE/TAX as external outflows.
    fees_as_flows: bool = False
    # Treat DIVIDEND/INTEREST as external flows (income swept out of the account).
    income_as_flows: bool = False
    qc: QCSettings = Field(default_factory=QCSettings)


DEFAULT_SETTINGS = EngineSettings()


def _candidate_paths() -> list[Path]:
    paths: list[Path] = []
    env = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if env:
        paths.append(Path(env).expanduser())
    paths.append(Path("portfolio_engine.yaml"))
    home = Path(os.path.expanduser("~"))
    paths.append(home / ".portfolio_engine" / "portfolio_engine.yaml")
    return paths


def load_engine_config(path: Optional[Path] = None) -> tuple[EngineSettings, Optional[str]]:
    """
    Load engine settings from YAML (if present).

    An explicit `path` must exist. Otherwise the search order is (first match wins):
      - $PORTFOLIO_ENGINE_CONFIG
      - ./portfolio_engine.yaml
      - ~/.portfolio_engine/portfolio_engine.yaml
    """
    if path is not None:
        data = yaml.safe_load(path.read_text()) or {}
        return EngineSettings.model_validate(data), str(path)
    for p in _candidate_paths():
        if p.exists():
            data = yaml.safe_load(p.read_text()) or {}
            return EngineSettings.model_validate(data), str(p)
    return EngineSettings(), None
