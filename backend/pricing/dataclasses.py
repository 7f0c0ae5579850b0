from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .services.utils import ZERO


@dataclass(frozen=True)
class RateCategory:
    key: str
    display_name: str
    weight_rate: Decimal  # currency per billed kg
    volume_rate: Decimal  # currency per volumetric unit
    description: str = ""


@dataclass(frozen=True)
class Constants:
    volume_divisor: Decimal = Decimal("28317")
    cbm_to_volumetric_factor: Decimal = Decimal("35.3")
    minimum_charge: Decimal = ZERO
    oversized_limit_cm: Decimal = Decimal("300")
    oversized_fee: Decimal = ZERO
    overweight_limit_kg: Decimal = Decimal("100")
    overweight_fee: Decimal = ZERO


@dataclass(frozen=True, eq=False)
class RateTable:
    """Immutable snapshot of the rate cards. Publish a new one instead of mutating."""
    version: int
    categories: Mapping[str, RateCategory]
    constants: Constants
    default_category_key: str = "general"
    strict_categories: bool = False

    def __post_init__(self):
        object.__setattr__(self, "categories", MappingProxyType(dict(self.categories)))


@dataclass(frozen=True)
class Box:
    name: str = ""
    category_key: str = ""
    weight_kg: Optional[Decimal] = None
    length_cm: Optional[Decimal] = None
    width_cm: Optional[Decimal] = None
    height_cm: Optional[Decimal] = None
    cbm: Optional[Decimal] = None  # volume given directly instead of dimensions


@dataclass(frozen=True)
class BoxQuote:
    box: Box
    category_key: str
    volumetric_units: int
    volume_cost: Decimal
    weight_billed: Decimal
    weight_cost: Decimal
    fee: Decimal
    billed_fee: int
    is_oversized: bool = False
    is_overweight: bool = False
    measured: bool = True
    category_fallback: bool = False


@dataclass(frozen=True)
class PackageQuote:
    computed_fee: int
    box_quotes: Tuple[BoxQuote, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ShipmentQuote:
    base_fee_raw: int
    base_fee: int
    minimum_charge_applied: bool
    oversized_fee: int
    overweight_fee: int
    total_volumetric_units: int
    total_cbm: Decimal
    remote_area_rate: Decimal
    remote_area_fee: int
    total_fee: int
    rate_table_version: int
    box_quotes: Tuple[BoxQuote, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict:
        return {
            "base_fee_raw": self.base_fee_raw,
            "base_fee": self.base_fee,
            "minimum_charge_applied": self.minimum_charge_applied,
            "oversized_fee": self.oversized_fee,
            "overweight_fee": self.overweight_fee,
            "total_volumetric_units": self.total_volumetric_units,
            "total_cbm": str(self.total_cbm),
            "remote_area_rate": str(self.remote_area_rate),
            "remote_area_fee": self.remote_area_fee,
            "total_fee": self.total_fee,
            "rate_table_version": self.rate_table_version,
        }
