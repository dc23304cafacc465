from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    logs_dir: Path
    reports_dir: Path


@dataclass(frozen=True)
class LedgerSettings:
    default_bag_weight: float = 25.0
    loss_category: str = "Loss/Damage"
    version: str = "1.0.0"


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "ContainerStockLedger") -> AppPaths:
    override = os.environ.get("CSL_HOME")
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    reports = base / "reports"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)
    reports.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, logs_dir=logs, reports_dir=reports)


def load_settings() -> LedgerSettings:
    defaults = LedgerSettings()
    raw_weight = os.environ.get("CSL_DEFAULT_BAG_WEIGHT")
    weight = defaults.default_bag_weight
    if raw_weight:
        weight = float(raw_weight)
        if weight <= 0:
            raise ValueError(f"CSL_DEFAULT_BAG_WEIGHT must be > 0. Received: {raw_weight}")
    return LedgerSettings(
        default_bag_weight=weight,
        loss_category=os.environ.get("CSL_LOSS_CATEGORY", defaults.loss_category),
        version=defaults.version,
    )
