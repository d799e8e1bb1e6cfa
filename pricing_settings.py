"""
Pricing Settings
================
Injectable configuration for the proposal pricing core: lender panel,
candidate loan terms, labor multiplier tables, the material/labor cost model,
per-tier profiles and input bounds.

Defaults mirror the standard roofing price book. A tenant or region can
replace any top-level section through a JSON file named by
PROPOSAL_PRICING_CONFIG without touching code.
"""

import json
import logging
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from proposal_errors import InvalidInput

logger = logging.getLogger(__name__)

TIER_NAMES = ("good", "better", "best")
EDGE_NAMES = ("ridge", "hip", "valley", "eave", "rake")


# =============================================================================
# FINANCING
# =============================================================================


class LenderConfig(BaseModel):
    """One lender on the financing panel."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    apr_percent: float = Field(..., ge=0)
    eligible_terms: list[int] = Field(default_factory=list)
    min_amount: float = Field(0.0, ge=0)
    max_amount: Optional[float] = Field(None, ge=0, description="None means no upper limit")
    promo_text: Optional[str] = None

    @model_validator(mode="after")
    def _check_range(self) -> "LenderConfig":
        if self.max_amount is not None and self.max_amount < self.min_amount:
            raise ValueError(
                f"Lender '{self.name}' max_amount {self.max_amount} is below min_amount {self.min_amount}"
            )
        if any(term < 1 for term in self.eligible_terms):
            raise ValueError(f"Lender '{self.name}' has a term shorter than one month")
        return self

    def covers(self, principal: float) -> bool:
        if principal < self.min_amount:
            return False
        return self.max_amount is None or principal <= self.max_amount


DEFAULT_LENDERS = [
    LenderConfig(
        name="In-House Promo",
        apr_percent=0.0,
        eligible_terms=[12],
        min_amount=1000,
        max_amount=50000,
        promo_text="0% APR for 12 months",
    ),
    LenderConfig(
        name="In-House Financing",
        apr_percent=5.99,
        eligible_terms=[36],
        min_amount=2500,
        max_amount=150000,
    ),
    LenderConfig(
        name="Home Improvement Loan",
        apr_percent=7.99,
        eligible_terms=[60],
        min_amount=5000,
        max_amount=100000,
    ),
    LenderConfig(
        name="Extended Term Financing",
        apr_percent=9.99,
        eligible_terms=[120],
        min_amount=5000,
        max_amount=250000,
        promo_text="Low monthly payments",
    ),
]

DEFAULT_FINANCING_TERMS = [12, 36, 60, 120]


# =============================================================================
# COST MODEL
# =============================================================================


class MultiplierTables(BaseModel):
    """Labor multipliers keyed by pitch ratio, complexity and story count."""

    model_config = ConfigDict(frozen=True)

    pitch: dict[str, float] = Field(default_factory=lambda: {
        "flat": 0.9,
        "2/12": 0.95,
        "3/12": 1.0,
        "4/12": 1.0,
        "5/12": 1.05,
        "6/12": 1.1,
        "7/12": 1.15,
        "8/12": 1.25,
        "9/12": 1.35,
        "10/12": 1.5,
        "11/12": 1.65,
        "12/12": 1.8,
    })
    complexity: dict[str, float] = Field(default_factory=lambda: {
        "simple": 1.0,
        "moderate": 1.25,
        "complex": 1.6,
    })
    stories: dict[int, float] = Field(default_factory=lambda: {
        1: 1.0,
        2: 1.15,
        3: 1.3,
    })

    @model_validator(mode="after")
    def _check_tables(self) -> "MultiplierTables":
        for table_name in ("pitch", "complexity", "stories"):
            table = getattr(self, table_name)
            if not table:
                raise ValueError(f"Multiplier table '{table_name}' must not be empty")
            if any(value <= 0 for value in table.values()):
                raise ValueError(f"Multiplier table '{table_name}' contains a non-positive multiplier")
        if min(self.stories) < 1:
            raise ValueError("Story multipliers must be keyed from 1 upward")
        return self

    def story_multiplier(self, stories: int) -> float:
        """Multiplier for a story count; counts above the table use its top entry."""
        if stories in self.stories:
            return self.stories[stories]
        eligible = [key for key in self.stories if key <= stories]
        key = max(eligible) if eligible else min(self.stories)
        return self.stories[key]


class MaterialComponent(BaseModel):
    """
    A material line with a unit cost per tier.

    Sized from the roof's edge lengths when the job carries linear
    measurements and the component names `edges`; otherwise from the
    waste-adjusted squares times `units_per_square`. `tiers` limits the
    component to some offers (None means every tier).
    """

    model_config = ConfigDict(frozen=True)

    name: str
    category: str
    unit: str
    units_per_square: float = Field(..., gt=0)
    edges: list[str] = Field(default_factory=list)
    feet_per_unit: Optional[float] = Field(None, gt=0)
    apply_waste: bool = True
    whole_units: bool = True
    unit_cost: dict[str, float]
    tier_names: dict[str, str] = Field(default_factory=dict)
    tiers: Optional[list[str]] = None

    @model_validator(mode="after")
    def _check_tiers(self) -> "MaterialComponent":
        offered = _check_tier_list(self.tiers, f"Material '{self.name}'")
        missing = [tier for tier in offered if tier not in self.unit_cost]
        if missing:
            raise ValueError(f"Material '{self.name}' has no unit cost for tiers {missing}")
        if any(cost < 0 for cost in self.unit_cost.values()):
            raise ValueError(f"Material '{self.name}' has a negative unit cost")
        _check_edges(self.edges, self.feet_per_unit, f"Material '{self.name}'", "feet_per_unit")
        return self

    def offered_for(self, tier: str) -> bool:
        return self.tiers is None or tier in self.tiers

    def name_for(self, tier: str) -> str:
        return self.tier_names.get(tier, self.name)


class LaborTask(BaseModel):
    """
    A labor task. Hours come from edge lengths (`edges` / `feet_per_hour`)
    when the job has linear measurements, otherwise from `hours_per_square`,
    plus any `fixed_hours` per job.
    """

    model_config = ConfigDict(frozen=True)

    task: str
    hours_per_square: float = Field(0.0, ge=0)
    edges: list[str] = Field(default_factory=list)
    feet_per_hour: Optional[float] = Field(None, gt=0)
    fixed_hours: float = Field(0.0, ge=0)
    pitch_sensitive: bool = True
    complexity_sensitive: bool = True
    story_sensitive: bool = True
    tiers: Optional[list[str]] = None

    @model_validator(mode="after")
    def _check_sizing(self) -> "LaborTask":
        _check_tier_list(self.tiers, f"Labor task '{self.task}'")
        _check_edges(self.edges, self.feet_per_hour, f"Labor task '{self.task}'", "feet_per_hour")
        if self.hours_per_square == 0 and self.fixed_hours == 0 and not self.edges:
            raise ValueError(f"Labor task '{self.task}' has no hours")
        return self

    def offered_for(self, tier: str) -> bool:
        return self.tiers is None or tier in self.tiers


def _check_tier_list(tiers: Optional[list[str]], owner: str) -> list[str]:
    if tiers is None:
        return list(TIER_NAMES)
    if not tiers:
        raise ValueError(f"{owner} is offered in no tier")
    unknown = [tier for tier in tiers if tier not in TIER_NAMES]
    if unknown:
        raise ValueError(f"{owner} names unknown tiers {unknown}")
    return list(tiers)


def _check_edges(edges: list[str], rate: Optional[float], owner: str, rate_name: str) -> None:
    unknown = [edge for edge in edges if edge not in EDGE_NAMES]
    if unknown:
        raise ValueError(f"{owner} names unknown edges {unknown}. Allowed: {list(EDGE_NAMES)}")
    if edges and rate is None:
        raise ValueError(f"{owner} is sized by edges but has no {rate_name}")


def _default_materials() -> list[MaterialComponent]:
    return [
        MaterialComponent(
            name="Shingles", category="Shingles", unit="bundle", units_per_square=3,
            unit_cost={"good": 32, "better": 45, "best": 75},
            tier_names={
                "good": "3-Tab Architectural",
                "better": "Dimensional Architectural",
                "best": "Designer Luxury",
            },
        ),
        MaterialComponent(
            name="Underlayment", category="Underlayment", unit="roll", units_per_square=0.25,
            unit_cost={"good": 28, "better": 65, "best": 95},
            tier_names={"good": "Standard Felt", "better": "Synthetic", "best": "Premium Synthetic"},
        ),
        # Ice & water coverage grows with the tier: valleys, then eaves and valleys,
        # then 40% of the deck. A 75 sq ft roll covers 25 LF at 3 ft wide.
        MaterialComponent(
            name="Basic I&W Shield", category="Ice & Water Shield", unit="roll", units_per_square=0.1,
            edges=["valley"], feet_per_unit=25, apply_waste=False,
            unit_cost={"good": 45}, tiers=["good"],
        ),
        MaterialComponent(
            name="Standard I&W Shield", category="Ice & Water Shield", unit="roll", units_per_square=0.2,
            edges=["eave", "valley"], feet_per_unit=25, apply_waste=False,
            unit_cost={"better": 65}, tiers=["better"],
        ),
        MaterialComponent(
            name="Premium Self-Adhered", category="Ice & Water Shield", unit="roll", units_per_square=40 / 75,
            unit_cost={"best": 95}, tiers=["best"],
        ),
        MaterialComponent(
            name="Drip Edge", category="Drip Edge", unit="stick", units_per_square=0.8,
            edges=["eave", "rake"], feet_per_unit=10,
            unit_cost={"good": 5, "better": 8, "best": 18},
            tier_names={"good": "Galvanized Steel", "better": "Aluminum", "best": "Copper-Look"},
        ),
        MaterialComponent(
            name="Ridge Cap", category="Ridge Cap", unit="bundle", units_per_square=0.1,
            edges=["ridge", "hip"], feet_per_unit=25,
            unit_cost={"good": 35, "better": 55, "best": 85},
            tier_names={"good": "Standard Ridge", "better": "High-Profile Ridge", "best": "Designer Ridge"},
        ),
        MaterialComponent(
            name="Starter Strip", category="Starter Strip", unit="bundle", units_per_square=0.1,
            edges=["eave", "rake"], feet_per_unit=100,
            unit_cost={"good": 28, "better": 42, "best": 65},
            tier_names={"good": "Standard Starter", "better": "Premium Starter", "best": "Designer Starter"},
        ),
        MaterialComponent(
            name="Nails", category="Fasteners", unit="box", units_per_square=0.25,
            unit_cost={"good": 45, "better": 45, "best": 85},
            tier_names={"good": "Galvanized Nails", "better": "Galvanized Nails", "best": "Stainless Steel Nails"},
        ),
        MaterialComponent(
            name="Flashing Kit", category="Flashing", unit="kit", units_per_square=0.05,
            unit_cost={"good": 75, "better": 125, "best": 250},
            tier_names={
                "good": "Standard Flashing Kit",
                "better": "Premium Flashing Kit",
                "best": "Copper Flashing Kit",
            },
        ),
        MaterialComponent(
            name="Box Vent", category="Ventilation", unit="unit", units_per_square=0.1,
            unit_cost={"good": 25}, tiers=["good"],
        ),
        MaterialComponent(
            name="Ridge Vent", category="Ventilation", unit="LF", units_per_square=2,
            edges=["ridge"], feet_per_unit=1, apply_waste=False, whole_units=False,
            unit_cost={"better": 3.5, "best": 6}, tiers=["better", "best"],
            tier_names={"best": "Premium Ridge Vent"},
        ),
    ]


def _default_labor() -> list[LaborTask]:
    return [
        LaborTask(task="Tear-off & Installation", hours_per_square=1.5),
        LaborTask(
            task="Edge & Flashing Work", hours_per_square=0.2, pitch_sensitive=False,
            edges=list(EDGE_NAMES), feet_per_hour=50,
        ),
        LaborTask(task="Cleanup & Disposal", hours_per_square=0.15, pitch_sensitive=False),
        LaborTask(
            task="Ridge Vent Installation", hours_per_square=0.1, edges=["ridge"], feet_per_hour=20,
            pitch_sensitive=False, complexity_sensitive=False, story_sensitive=False,
            tiers=["better", "best"],
        ),
        LaborTask(
            task="Photo Documentation", fixed_hours=1.5,
            pitch_sensitive=False, complexity_sensitive=False, story_sensitive=False,
            tiers=["best"],
        ),
        LaborTask(
            task="Gutter Apron Installation", hours_per_square=0.1, edges=["eave"], feet_per_hour=30,
            pitch_sensitive=False, complexity_sensitive=False, story_sensitive=False,
            tiers=["best"],
        ),
    ]


class CostModel(BaseModel):
    """Material components and labor tasks used to cost one job."""

    model_config = ConfigDict(frozen=True)

    labor_rate_per_hour: float = Field(55.0, gt=0)
    materials: list[MaterialComponent] = Field(default_factory=_default_materials)
    labor: list[LaborTask] = Field(default_factory=_default_labor)


# =============================================================================
# TIER PROFILES
# =============================================================================


class WarrantyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    years: int = Field(..., ge=0)
    type: str
    description: str = ""


class TierProfile(BaseModel):
    """
    Per-tier presentation and cost markups.

    Markups are fractions added to the base material unit costs and the labor
    rate (0.15 adds 15%) before overhead and margin.
    """

    model_config = ConfigDict(frozen=True)

    label: str
    description: str = ""
    material_tier: str
    material_markup: float = Field(0.0, ge=0)
    labor_markup: float = Field(0.0, ge=0)
    warranty: WarrantyConfig
    features: list[str] = Field(default_factory=list)
    recommended: bool = False


def _default_tier_profiles() -> dict[str, TierProfile]:
    return {
        "good": TierProfile(
            label="Good",
            description="Quality roofing at an affordable price",
            material_tier="Standard",
            material_markup=0.15,
            labor_markup=0.10,
            warranty=WarrantyConfig(
                years=10, type="Standard", description="10-year manufacturer warranty on materials"
            ),
            features=[
                "3-tab architectural shingles",
                "Standard underlayment",
                "Basic ice & water shield at valleys",
                "Standard drip edge",
                "Standard ventilation review",
            ],
        ),
        "better": TierProfile(
            label="Better",
            description="Premium materials with enhanced protection",
            material_tier="Premium",
            material_markup=0.20,
            labor_markup=0.15,
            warranty=WarrantyConfig(
                years=25, type="Extended", description="25-year extended warranty with labor coverage"
            ),
            features=[
                "Dimensional architectural shingles",
                "Synthetic underlayment",
                "Full ice & water shield at eaves and valleys",
                "Aluminum drip edge",
                "Ridge vent installation",
                "Upgraded starter strips",
                "Enhanced flashing",
            ],
            recommended=True,
        ),
        "best": TierProfile(
            label="Best",
            description="Top-tier materials with lifetime protection",
            material_tier="Designer",
            material_markup=0.25,
            labor_markup=0.20,
            warranty=WarrantyConfig(
                years=50, type="Lifetime", description="50-year lifetime warranty with full coverage"
            ),
            features=[
                "Designer or luxury shingles",
                "Premium synthetic underlayment",
                "Full roof ice & water shield",
                "Copper or premium drip edge",
                "Enhanced ventilation system",
                "Premium starter and hip/ridge",
                "Custom flashing work",
                "Gutter apron installation",
                "Detailed photo documentation",
                "Priority scheduling",
            ],
        ),
    }


# =============================================================================
# BOUNDS & ROOT SETTINGS
# =============================================================================


class PricingBounds(BaseModel):
    """Inclusive bounds for the percentage knobs on a PricingInput."""

    model_config = ConfigDict(frozen=True)

    waste_min: float = 5.0
    waste_max: float = 20.0
    overhead_min: float = 10.0
    overhead_max: float = 30.0
    margin_min: float = 0.0
    margin_max: float = 80.0

    @model_validator(mode="after")
    def _check_bounds(self) -> "PricingBounds":
        for knob in ("waste", "overhead", "margin"):
            low = getattr(self, f"{knob}_min")
            high = getattr(self, f"{knob}_max")
            if low < 0 or high < low:
                raise ValueError(f"Invalid {knob} bounds [{low}, {high}]")
        if self.margin_max >= 100:
            raise ValueError("margin_max must be below 100; a 100% margin has no selling price")
        return self


class PricingSettings(BaseModel):
    """Everything the pricing core needs that is not part of the job itself."""

    model_config = ConfigDict(frozen=True)

    lenders: list[LenderConfig] = Field(default_factory=lambda: list(DEFAULT_LENDERS))
    financing_terms: Optional[list[int]] = Field(default_factory=lambda: list(DEFAULT_FINANCING_TERMS))
    multipliers: MultiplierTables = Field(default_factory=MultiplierTables)
    cost_model: CostModel = Field(default_factory=CostModel)
    tiers: dict[str, TierProfile] = Field(default_factory=_default_tier_profiles)
    bounds: PricingBounds = Field(default_factory=PricingBounds)
    rounding: Literal["cent", "whole"] = "cent"

    @model_validator(mode="after")
    def _check_tier_profiles(self) -> "PricingSettings":
        missing = [tier for tier in TIER_NAMES if tier not in self.tiers]
        if missing:
            raise ValueError(f"Tier profiles missing for {missing}")
        return self


def load_pricing_settings(
    path: Optional[Union[str, Path]] = None,
    rounding: Optional[str] = None,
) -> PricingSettings:
    """
    Build PricingSettings from the defaults plus an optional JSON override file.

    Top-level keys in the file replace the matching default section. When no
    path is given the PROPOSAL_PRICING_CONFIG setting is used.
    """
    from config import config

    source = path if path is not None else config.pricing.settings_path
    overrides: dict = {}
    if source:
        source_path = Path(source)
        try:
            overrides = json.loads(source_path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise InvalidInput(f"Cannot read pricing settings from {source_path}: {exc}", field="settings") from exc
        if not isinstance(overrides, dict):
            raise InvalidInput(f"Pricing settings in {source_path} must be a JSON object", field="settings")
        logger.info("Loaded pricing settings overrides from %s: %s", source_path, sorted(overrides))

    if rounding is None and "rounding" not in overrides:
        rounding = config.pricing.rounding
    if rounding is not None:
        overrides["rounding"] = rounding

    try:
        return PricingSettings.model_validate(overrides)
    except ValidationError as exc:
        raise InvalidInput(f"Invalid pricing settings: {exc}", field="settings") from exc
