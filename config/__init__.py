"""Configuration loading utilities."""

from pathlib import Path
from typing import Any

import yaml

CONFIG_DIR = Path(__file__).parent
TAX_PARAMS_FILE = "tax_params.yaml"


def load_yaml_config(filename: str | Path) -> Any:
    """Load a YAML file; bare names resolve inside the config/ directory."""
    path = Path(filename)
    if not path.is_absolute() and not path.exists():
        path = CONFIG_DIR / path
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_city_params() -> list[dict[str, Any]]:
    """Curated per-city, per-year parameter sets from tax_params.yaml."""
    data = load_yaml_config(TAX_PARAMS_FILE) or {}
    return data.get("params", [])
