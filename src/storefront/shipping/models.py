"""Shipping configuration inputs and computed rate/option shapes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import Field, model_validator

from storefront.pricing.models import Address, Dimensions, SnapshotModel

KG_PER_LB = 0.45359237


class ShippingProvider(Enum):
    FEDEX = "FEDEX"
    UPS = "UPS"
    DHL = "DHL"
    USPS = "USPS"
    ROYAL_MAIL = "ROYAL_MAIL"
    CANADA_POST = "CANADA_POST"
    LOCAL_COURIER = "LOCAL_COURIER"
    CUSTOM = "CUSTOM"


class DayRange(SnapshotModel):
    min: int = Field(ge=0)
    max: int = Field(ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> DayRange:
        if self.max < self.min:
            raise ValueError(f"max days ({self.max}) is below min days ({self.min})")
        return self


class WeightLimits(SnapshotModel):
    min: float = Field(ge=0)
    max: float = Field(gt=0)
    unit: Literal["kg", "lb"] = "kg"

    def contains(self, weight_kg: float) -> bool:
        low, high = self.min, self.max
        if self.unit == "lb":
            low, high = low * KG_PER_LB, high * KG_PER_LB
        return low <= weight_kg <= high


class ProcessingTime(SnapshotModel):
    min: int = Field(default=1, ge=0)
    max: int = Field(default=2, ge=0)
    unit: Literal["days", "hours"] = "days"

    @property
    def max_days(self) -> float:
        return self.max / 24 if self.unit == "hours" else float(self.max)


class VendorShippingRate(SnapshotModel):
    """A custom rate rule configured by a vendor."""

    id: str
    name: str
    description: str | None = None
    rate: Decimal = Field(ge=0)
    free_threshold: Decimal | None = Field(default=None, ge=0)
    estimated_days: DayRange
    regions: list[str] = Field(default_factory=list)  # ISO country codes
    weight_limits: WeightLimits | None = None


class VendorShippingInfo(SnapshotModel):
    free_shipping_enabled: bool = False
    free_shipping_min_amount: Decimal | None = Field(default=None, ge=0)
    local_delivery_enabled: bool = False
    local_delivery_radius_km: float | None = Field(default=None, ge=0)
    local_delivery_fee: Decimal | None = Field(default=None, ge=0)
    international_shipping_enabled: bool = True
    origin: Address | None = None
    processing_time: ProcessingTime = Field(default_factory=ProcessingTime)
    shipping_rates: list[VendorShippingRate] = Field(default_factory=list)


class ShippingMethod(SnapshotModel):
    """Platform-wide method used when a vendor has no shipping configuration."""

    id: str
    name: str
    description: str | None = None
    provider: ShippingProvider = ShippingProvider.CUSTOM
    service_code: str
    is_active: bool = True
    base_rate: Decimal = Field(ge=0)
    per_kg_rate: Decimal | None = Field(default=None, ge=0)
    free_shipping_threshold: Decimal | None = Field(default=None, ge=0)
    estimated_days: DayRange
    available_countries: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PackageInfo:
    weight: float  # kg
    dimensions: Dimensions


@dataclass(frozen=True, slots=True)
class ShippingRate:
    """A priced offer for one vendor's package. Computed per request."""

    method_id: str
    method_name: str
    provider: ShippingProvider
    service_code: str
    cost: Decimal
    currency: str
    estimated_days: DayRange
    estimated_delivery: datetime
    base_rate: Decimal
    features: tuple[str, ...] = ()
    vendor_id: str | None = None
    fuel_surcharge: Decimal | None = None
    residential_surcharge: Decimal | None = None


@dataclass(frozen=True, slots=True)
class VendorRates:
    vendor_id: str
    rates: list[ShippingRate]
    package: PackageInfo
    processing_time: ProcessingTime = field(default_factory=ProcessingTime)


@dataclass(frozen=True, slots=True)
class VendorRateBreakdown:
    vendor_id: str
    rate: Decimal
    method_id: str
    processing_time: ProcessingTime


@dataclass(frozen=True, slots=True)
class ShippingOption:
    """A cart-level shipping choice, possibly combined across vendors."""

    id: str
    name: str
    cost: Decimal
    estimated_days: DayRange
    tracking_enabled: bool
    description: str | None = None
    tier: str | None = None
    vendor_rates: tuple[VendorRateBreakdown, ...] = ()


@dataclass(frozen=True, slots=True)
class CartShippingCalculation:
    shipping_address: Address
    options: list[ShippingOption]
    total_weight: float
    total_dimensions: Dimensions
    estimated_delivery: datetime | None
