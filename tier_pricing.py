"""
Tier Pricing Calculator
=======================
Turns a roof measurement and the pricing knobs into three priced offers
(Good / Better / Best).

Pipeline per job:
1. squares = roof area / 100
2. material quantity = squares * (1 + waste%)
3. per tier, material cost and labor cost from the injected cost model:
   components sized by edge lengths when the job has linear measurements,
   otherwise by the waste-adjusted squares; labor scaled by the pitch,
   complexity and story multipliers; the tier's markups on both
4. overhead = (material + labor) * overhead%
5. selling price = (material + labor + overhead) / (1 - margin%)
   Margin is a share of the selling price, not a markup on cost.
6. tier label, material grade, warranty and features from the tier profile
7. financing from the lender panel
8. round once at the output boundary
"""

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterator, Mapping, Optional, Union

from amortization_engine import FinancingOption, build_financing_schedule, lowest_monthly_payment
from currency import round_currency
from pricing_settings import (
    EDGE_NAMES,
    TIER_NAMES,
    LaborTask,
    MaterialComponent,
    PricingBounds,
    PricingSettings,
    TierProfile,
)
from proposal_errors import InvalidInput


class Tier(str, Enum):
    """Offer tiers, cheapest first."""
    GOOD = "good"
    BETTER = "better"
    BEST = "best"


class Complexity(str, Enum):
    SIMPLE = "simple"        # Few valleys/hips
    MODERATE = "moderate"    # Multiple sections
    COMPLEX = "complex"      # Many angles


DEFAULT_SELECTED_TIER = Tier.BETTER


@dataclass(frozen=True)
class ProfitMargins:
    """Target margin percent per tier, as a share of the selling price."""
    good: float = 25.0
    better: float = 30.0
    best: float = 35.0

    def for_tier(self, tier: Union[Tier, str]) -> float:
        return getattr(self, Tier(tier).value)


@dataclass(frozen=True)
class LinearMeasurements:
    """Roof edge lengths in linear feet."""
    ridge: float = 0.0
    hip: float = 0.0
    valley: float = 0.0
    eave: float = 0.0
    rake: float = 0.0

    def total(self, edges) -> float:
        return sum(getattr(self, edge) for edge in edges)

    def to_dict(self) -> dict:
        return {edge: getattr(self, edge) for edge in EDGE_NAMES}


@dataclass(frozen=True)
class PricingInput:
    """
    A job to be priced. Build through build_pricing_input to validate.

    Without linear_measurements, edge-sized materials and labor fall back to
    per-square estimates. labor_rate_per_hour overrides the cost model's rate.
    """
    roof_area: float
    pitch: str
    complexity: Complexity
    stories: int = 1
    waste_percentage: float = 10.0
    overhead_percentage: float = 15.0
    profit_margins: ProfitMargins = field(default_factory=ProfitMargins)
    linear_measurements: Optional[LinearMeasurements] = None
    labor_rate_per_hour: Optional[float] = None

    @property
    def squares(self) -> float:
        return self.roof_area / 100

    def to_dict(self) -> dict:
        return {
            "roofArea": self.roof_area,
            "pitch": self.pitch,
            "complexity": self.complexity.value,
            "stories": self.stories,
            "wastePercentage": self.waste_percentage,
            "overheadPercentage": self.overhead_percentage,
            "profitMargins": {
                "good": self.profit_margins.good,
                "better": self.profit_margins.better,
                "best": self.profit_margins.best,
            },
            "linearMeasurements": (
                self.linear_measurements.to_dict() if self.linear_measurements is not None else None
            ),
            "laborRatePerHour": self.labor_rate_per_hour,
        }


@dataclass(frozen=True)
class Warranty:
    years: int
    type: str
    description: str = ""


@dataclass(frozen=True)
class MaterialLine:
    name: str
    category: str
    quantity: float
    unit: str
    unit_cost: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class LaborLine:
    task: str
    hours: float
    rate_per_hour: Decimal
    total_cost: Decimal


@dataclass(frozen=True)
class TierPricing:
    """One fully priced offer tier."""
    tier: Tier
    label: str
    description: str
    material_tier: str
    selling_price: Decimal
    price_per_square: Decimal
    material_subtotal: Decimal
    labor_subtotal: Decimal
    overhead_amount: Decimal
    cost_subtotal: Decimal
    profit_amount: Decimal
    margin_percent: float
    warranty: Warranty
    features: tuple[str, ...] = ()
    financing: tuple[FinancingOption, ...] = ()
    headline_financing: Optional[FinancingOption] = None
    materials: tuple[MaterialLine, ...] = ()
    labor: tuple[LaborLine, ...] = ()
    recommended: bool = False

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "label": self.label,
            "description": self.description,
            "materialTier": self.material_tier,
            "totalPrice": float(self.selling_price),
            "pricePerSquare": float(self.price_per_square),
            "materialSubtotal": float(self.material_subtotal),
            "laborSubtotal": float(self.labor_subtotal),
            "overhead": float(self.overhead_amount),
            "subtotal": float(self.cost_subtotal),
            "profitAmount": float(self.profit_amount),
            "profitMargin": self.margin_percent,
            "warranty": {
                "years": self.warranty.years,
                "type": self.warranty.type,
                "description": self.warranty.description,
            },
            "features": list(self.features),
            "financing": [option.to_dict() for option in self.financing],
            "materials": [
                {
                    "name": line.name,
                    "category": line.category,
                    "quantity": line.quantity,
                    "unit": line.unit,
                    "unitCost": float(line.unit_cost),
                    "totalCost": float(line.total_cost),
                }
                for line in self.materials
            ],
            "labor": [
                {
                    "task": line.task,
                    "hours": line.hours,
                    "ratePerHour": float(line.rate_per_hour),
                    "totalCost": float(line.total_cost),
                }
                for line in self.labor
            ],
            "recommended": self.recommended,
        }


@dataclass(frozen=True)
class TierPricingSet:
    """The three tiers priced from one PricingInput."""
    good: TierPricing
    better: TierPricing
    best: TierPricing

    def __getitem__(self, tier: Union[Tier, str]) -> TierPricing:
        return getattr(self, Tier(tier).value)

    def __iter__(self) -> Iterator[TierPricing]:
        return iter((self.good, self.better, self.best))

    def as_dict(self) -> dict:
        return {tier.tier.value: tier.to_dict() for tier in self}


# =============================================================================
# INPUT CONSTRUCTION
# =============================================================================


def _coerce_margins(margins: Union[ProfitMargins, Mapping[str, Any], None]) -> ProfitMargins:
    if margins is None:
        return ProfitMargins()
    if isinstance(margins, ProfitMargins):
        return margins
    unknown = set(margins) - set(TIER_NAMES)
    if unknown:
        raise InvalidInput(f"Unknown tiers in profit margins: {sorted(unknown)}", field="profit_margins")
    defaults = ProfitMargins()
    try:
        return ProfitMargins(**{
            tier: float(margins.get(tier, getattr(defaults, tier))) for tier in TIER_NAMES
        })
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Profit margins must be numbers: {exc}", field="profit_margins") from exc


def _coerce_linear(
    measurements: Union[LinearMeasurements, Mapping[str, Any], None],
) -> Optional[LinearMeasurements]:
    if measurements is None or isinstance(measurements, LinearMeasurements):
        return measurements
    unknown = set(measurements) - set(EDGE_NAMES)
    if unknown:
        raise InvalidInput(
            f"Unknown edges in linear measurements: {sorted(unknown)}. Allowed: {list(EDGE_NAMES)}",
            field="linear_measurements",
        )
    return LinearMeasurements(**{edge: measurements.get(edge, 0.0) for edge in EDGE_NAMES})


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _check_bound(value: float, low: float, high: float, field_name: str) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or math.isnan(value):
        raise InvalidInput(f"{field_name} must be a number, got {value!r}", field=field_name)
    if value < low or value > high:
        raise InvalidInput(f"{field_name} must be between {low} and {high}, got {value}", field=field_name)


def validate_pricing_input(pricing_input: PricingInput, settings: PricingSettings) -> None:
    """Raise InvalidInput for anything outside the configured domain. Never clamps."""
    area = pricing_input.roof_area
    if not isinstance(area, (int, float)) or isinstance(area, bool) or not math.isfinite(area) or area <= 0:
        raise InvalidInput(f"roof_area must be a positive number, got {area!r}", field="roof_area")

    stories = pricing_input.stories
    if isinstance(stories, bool) or not isinstance(stories, int) or stories < 1:
        raise InvalidInput(f"stories must be a whole number >= 1, got {stories!r}", field="stories")

    if pricing_input.pitch not in settings.multipliers.pitch:
        raise InvalidInput(
            f"Unknown pitch '{pricing_input.pitch}'. Allowed: {list(settings.multipliers.pitch)}",
            field="pitch",
        )
    if not isinstance(pricing_input.complexity, Complexity) or \
            pricing_input.complexity.value not in settings.multipliers.complexity:
        raise InvalidInput(f"Unknown complexity '{pricing_input.complexity}'", field="complexity")

    bounds: PricingBounds = settings.bounds
    _check_bound(pricing_input.waste_percentage, bounds.waste_min, bounds.waste_max, "waste_percentage")
    _check_bound(pricing_input.overhead_percentage, bounds.overhead_min, bounds.overhead_max, "overhead_percentage")
    for tier in TIER_NAMES:
        _check_bound(
            pricing_input.profit_margins.for_tier(tier),
            bounds.margin_min,
            bounds.margin_max,
            f"profit_margins.{tier}",
        )

    if pricing_input.linear_measurements is not None:
        for edge in EDGE_NAMES:
            length = getattr(pricing_input.linear_measurements, edge)
            if not _is_number(length) or length < 0:
                raise InvalidInput(
                    f"linear_measurements.{edge} must be a number >= 0, got {length!r}",
                    field=f"linear_measurements.{edge}",
                )

    rate = pricing_input.labor_rate_per_hour
    if rate is not None and (not _is_number(rate) or rate <= 0):
        raise InvalidInput(
            f"labor_rate_per_hour must be a positive number, got {rate!r}", field="labor_rate_per_hour"
        )


def build_pricing_input(
    roof_area: float,
    pitch: str,
    complexity: Union[Complexity, str],
    stories: int = 1,
    waste_percentage: float = 10.0,
    overhead_percentage: float = 15.0,
    profit_margins: Union[ProfitMargins, Mapping[str, Any], None] = None,
    linear_measurements: Union[LinearMeasurements, Mapping[str, Any], None] = None,
    labor_rate_per_hour: Optional[float] = None,
    settings: Optional[PricingSettings] = None,
) -> PricingInput:
    """Validate the raw measurement-form values and freeze them into a PricingInput."""
    try:
        complexity_value = Complexity(complexity)
    except ValueError as exc:
        raise InvalidInput(
            f"Unknown complexity '{complexity}'. Allowed: {[c.value for c in Complexity]}",
            field="complexity",
        ) from exc

    pricing_input = PricingInput(
        roof_area=roof_area,
        pitch=str(pitch).strip(),
        complexity=complexity_value,
        stories=stories,
        waste_percentage=waste_percentage,
        overhead_percentage=overhead_percentage,
        profit_margins=_coerce_margins(profit_margins),
        linear_measurements=_coerce_linear(linear_measurements),
        labor_rate_per_hour=labor_rate_per_hour,
    )
    validate_pricing_input(pricing_input, settings or PricingSettings())
    return pricing_input


# =============================================================================
# COSTING
# =============================================================================


def _component_quantity(component: MaterialComponent, pricing_input: PricingInput, material_quantity: float) -> float:
    linear = pricing_input.linear_measurements
    if component.edges and linear is not None:
        feet = linear.total(component.edges)
        if component.apply_waste:
            feet *= 1 + pricing_input.waste_percentage / 100
        return feet / component.feet_per_unit
    return material_quantity * component.units_per_square


def _material_lines(
    tier: str,
    pricing_input: PricingInput,
    material_quantity: float,
    settings: PricingSettings,
    profile: TierProfile,
) -> tuple[list[MaterialLine], float]:
    lines = []
    total = 0.0
    for component in settings.cost_model.materials:
        if not component.offered_for(tier):
            continue
        quantity = _component_quantity(component, pricing_input, material_quantity)
        if component.whole_units:
            # round() first so float noise like 82.50000000001 does not buy an extra bundle
            quantity = float(math.ceil(round(quantity, 9)))
        if quantity <= 0:
            continue
        unit_cost = component.unit_cost[tier] * (1 + profile.material_markup)
        cost = quantity * unit_cost
        total += cost
        lines.append(MaterialLine(
            name=component.name_for(tier),
            category=component.category,
            quantity=quantity if component.whole_units else round(quantity, 2),
            unit=component.unit,
            unit_cost=round_currency(unit_cost, "cent"),
            total_cost=round_currency(cost, settings.rounding),
        ))
    return lines, total


def _task_hours(task: LaborTask, pricing_input: PricingInput, material_quantity: float) -> float:
    linear = pricing_input.linear_measurements
    if task.edges and linear is not None:
        hours = linear.total(task.edges) / task.feet_per_hour
    else:
        hours = material_quantity * task.hours_per_square
    return hours + task.fixed_hours


def _labor_lines(
    tier: str,
    pricing_input: PricingInput,
    material_quantity: float,
    settings: PricingSettings,
    profile: TierProfile,
) -> tuple[list[LaborLine], float]:
    tables = settings.multipliers
    base_rate = pricing_input.labor_rate_per_hour or settings.cost_model.labor_rate_per_hour
    rate = base_rate * (1 + profile.labor_markup)
    pitch_multiplier = tables.pitch[pricing_input.pitch]
    complexity_multiplier = tables.complexity[pricing_input.complexity.value]
    story_multiplier = tables.story_multiplier(pricing_input.stories)

    lines = []
    total = 0.0
    for task in settings.cost_model.labor:
        if not task.offered_for(tier):
            continue
        hours = _task_hours(task, pricing_input, material_quantity)
        if task.pitch_sensitive:
            hours *= pitch_multiplier
        if task.complexity_sensitive:
            hours *= complexity_multiplier
        if task.story_sensitive:
            hours *= story_multiplier
        if hours <= 0:
            continue
        cost = hours * rate
        total += cost
        lines.append(LaborLine(
            task=task.task,
            hours=round(hours, 2),
            rate_per_hour=round_currency(rate, "cent"),
            total_cost=round_currency(cost, settings.rounding),
        ))
    return lines, total


def calculate_tiers(
    pricing_input: PricingInput,
    settings: Optional[PricingSettings] = None,
) -> TierPricingSet:
    """
    Price all three tiers for one job.

    Raises InvalidInput when the input falls outside the configured domain.
    Identical inputs and settings always produce identical tiers.
    """
    settings = settings or PricingSettings()
    validate_pricing_input(pricing_input, settings)

    squares = pricing_input.squares
    material_quantity = squares * (1 + pricing_input.waste_percentage / 100)
    rounding = settings.rounding

    priced = {}
    for tier in TIER_NAMES:
        profile = settings.tiers[tier]
        material_lines, material_cost = _material_lines(
            tier, pricing_input, material_quantity, settings, profile
        )
        labor_lines, labor_cost = _labor_lines(tier, pricing_input, material_quantity, settings, profile)
        overhead = (material_cost + labor_cost) * pricing_input.overhead_percentage / 100
        cost_subtotal = material_cost + labor_cost + overhead
        margin = pricing_input.profit_margins.for_tier(tier)
        selling_price = cost_subtotal / (1 - margin / 100)

        selling_out = round_currency(selling_price, rounding)
        financing = build_financing_schedule(
            selling_price, settings.lenders, settings.financing_terms, rounding
        )
        priced[tier] = TierPricing(
            tier=Tier(tier),
            label=profile.label,
            description=profile.description,
            material_tier=profile.material_tier,
            selling_price=selling_out,
            price_per_square=round_currency(selling_out / Decimal(str(squares)), rounding),
            material_subtotal=round_currency(material_cost, rounding),
            labor_subtotal=round_currency(labor_cost, rounding),
            overhead_amount=round_currency(overhead, rounding),
            cost_subtotal=round_currency(cost_subtotal, rounding),
            profit_amount=round_currency(selling_price - cost_subtotal, rounding),
            margin_percent=margin,
            warranty=Warranty(
                years=profile.warranty.years,
                type=profile.warranty.type,
                description=profile.warranty.description,
            ),
            features=tuple(profile.features),
            financing=tuple(financing),
            headline_financing=lowest_monthly_payment(financing),
            materials=tuple(material_lines),
            labor=tuple(labor_lines),
            recommended=profile.recommended,
        )

    return TierPricingSet(good=priced["good"], better=priced["better"], best=priced["best"])


def tier_difference(base: TierPricing, comparison: TierPricing) -> tuple[Decimal, Decimal]:
    """
    Price gap from base to comparison: (amount, percent of the comparison price).

    The percent is rounded half-up to one decimal place.
    """
    amount = comparison.selling_price - base.selling_price
    if comparison.selling_price == 0:
        return amount, Decimal("0.0")
    percent = (amount / comparison.selling_price * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return amount, percent
