"""Operator-maintained rate tables stored as YAML."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError
import yaml

from storefront.shipping.models import ShippingMethod


class TableLoadError(Exception):
    """Raised when a rate table file is missing or malformed."""


class TaxTable(BaseModel):
    """Country rates plus per-country subdivision overrides, as fractions."""

    countries: dict[str, Decimal] = Field(default_factory=dict)
    states: dict[str, dict[str, Decimal]] = Field(default_factory=dict)


class ShippingMethodTable(BaseModel):
    methods: list[ShippingMethod] = Field(default_factory=list)


def load_yaml(path: str | Path) -> Any:
    """Read a YAML document with ``yaml.safe_load``."""
    file_path = Path(path).expanduser()
    try:
        with file_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except FileNotFoundError as e:
        raise TableLoadError(f"Table file not found: {file_path}") from e
    except yaml.YAMLError as e:
        raise TableLoadError(f"Invalid YAML in {file_path}: {e}") from e


def load_tax_table(path: str | Path) -> TaxTable:
    raw = load_yaml(path) or {}
    try:
        table = TaxTable.model_validate(raw)
    except ValidationError as e:
        raise TableLoadError(f"Invalid tax table {path}: {e}") from e
    return TaxTable(
        countries={code.upper(): rate for code, rate in table.countries.items()},
        states={
            country.upper(): {state.upper(): rate for state, rate in rates.items()}
            for country, rates in table.states.items()
        },
    )


def load_shipping_methods(path: str | Path) -> list[ShippingMethod]:
    raw = load_yaml(path) or {}
    if isinstance(raw, list):
        raw = {"methods": raw}
    try:
        return ShippingMethodTable.model_validate(raw).methods
    except ValidationError as e:
        raise TableLoadError(f"Invalid shipping method table {path}: {e}") from e
