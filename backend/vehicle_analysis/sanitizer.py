"""
Result sanitization - turns an untrusted model payload into a typed result.

Each result type is described by a declarative table of field specs. One
generic routine walks the table in order, coercing, clamping and
default-filling every field, so adding a field is a table change rather than
new branching logic. The same tables generate the schema section of the
prompts (see prompts.py).

Sanitization is total: for any input, including None, scalars, lists and
arbitrarily malformed nesting, it returns a valid result and never raises.

Defaults may be constants or callables taking the current scope: a ChainMap
of the values already sanitized in this record, then its parents, ending
with the caller-supplied context (prerequisite results). Field order in the
tables therefore matters: aggregates come after the items they summarise.
"""

import math
from collections import ChainMap
from enum import Enum
from typing import Any, Callable, Iterable

from pydantic import BaseModel

from vehicle_analysis.models import (
    DamageCategory,
    Severity,
    VehicleRegion,
    RepairPriority,
    SafetyImpact,
    InsuranceCoverage,
    DamageLevel,
    InsuranceStatus,
    VehicleCondition,
    StructuralIntegrity,
    SystemStatus,
    MechanicalStatus,
    BodyAlignment,
    SeatbeltFunction,
    Roadworthiness,
    MarketTrend,
    MarketPressure,
    MarketSegment,
    Outlook,
    ExpertiseGrade,
    PurchaseRecommendation,
    RiskLevel,
    OpportunityLevel,
    InvestmentVerdict,
    Provenance,
    DamageArea,
    OverallAssessment,
    TechnicalAnalysis,
    SafetyAssessment,
    CostItem,
    RepairPhase,
    WarrantyTerms,
    RepairEstimate,
    AnalysisResult,
    EstimatedValue,
    PriceRange,
    MarketAnalysis,
    ConditionSummary,
    PriceBreakdown,
    MarketPosition,
    InvestmentAnalysis,
    Improvement,
    ValuationRecommendations,
    ComparableVehicle,
    ValuationResult,
    ComprehensiveSummary,
    RiskAssessment,
    OpportunityAssessment,
    ExpertOpinion,
    ActionItem,
    MaintenanceItem,
    FinalRecommendations,
    FinancialSummary,
    InvestmentDecision,
    PaintCondition,
    PaintDefectType,
    PaintQualityClass,
    PaintQuality,
    ColorAnalysis,
    SurfaceAnalysis,
    PaintDefect,
    PaintTechnicalDetails,
    PaintRecommendations,
    PaintCostEstimate,
    PaintResult,
    ComprehensiveResult,
)
from vehicle_analysis.config import (
    MARKET_IMPACT_COST_DIVISOR,
    RESALE_COST_DIVISOR,
    DEPRECIATION_COST_DIVISOR,
    LABOR_SHARE,
    PARTS_SHARE,
    PAINT_SHARE,
    COST_PER_REPAIR_DAY,
    DEFAULT_CURRENCY,
    MAX_AMOUNT,
    PRIMER_MICRONS,
    BASE_COAT_MICRONS,
    CLEAR_COAT_MICRONS,
    PAINT_HOURS_PER_DEFECT,
)


MISSING = object()

MANUAL_REVIEW_DESCRIPTION = (
    "No damage could be identified automatically; manual review recommended."
)
NO_DAMAGE_CONTEXT_NOTE = (
    "No damage assessment was available; the valuation assumes no unreported damage."
)

Scope = ChainMap


# --- Coercion Primitives ---

def to_number(value: Any) -> float | None:
    """Parses ints, floats and numeric strings. None for anything non-finite."""
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip())
        else:
            return None
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def cap_amount(value: float) -> float:
    """Bounds magnitude so derived arithmetic on the value stays finite."""
    return clamp(value, -MAX_AMOUNT, MAX_AMOUNT)


def clamp(value, minimum=None, maximum=None):
    if minimum is not None and value < minimum:
        return minimum
    if maximum is not None and value > maximum:
        return maximum
    return value


def normalize_token(value: Any) -> str | None:
    """'Paint-Damage ' -> 'paint_damage'."""
    if not isinstance(value, str):
        return None
    token = value.strip().lower()
    for sep in ("-", " "):
        token = token.replace(sep, "_")
    return token or None


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


# --- Field Specs ---

class FieldSpec:
    """
    One field of a result record.

    name is the model attribute; key is the camelCase key the model is asked
    to produce. Lookup falls back to the snake_case name.
    """

    def __init__(self, name: str, default: Any = None, key: str | None = None, hint: str = ""):
        self.name = name
        self.key = key or _camel(name)
        self.default = default
        self.hint = hint

    def lookup(self, source: dict) -> Any:
        if self.key in source:
            return source[self.key]
        return source.get(self.name, MISSING)

    def default_value(self, scope: Scope) -> Any:
        if callable(self.default):
            return self.default(scope)
        return self.default

    def coerce(self, value: Any, scope: Scope) -> Any:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def schema_lines(self, indent: int) -> list[str]:
        text = f"{'  ' * indent}- {self.key}: {self.describe()}"
        if self.hint:
            text += f" ({self.hint})"
        return [text]


class Number(FieldSpec):
    def __init__(self, name, default=0, minimum=None, maximum=None, integer=True,
                 nullable=False, key=None, hint=""):
        super().__init__(name, default, key, hint)
        self.minimum = minimum
        self.maximum = maximum
        self.integer = integer
        self.nullable = nullable

    def coerce(self, value, scope):
        number = to_number(value)
        if number is None:
            number = to_number(self.default_value(scope))
            if number is None:
                return None if self.nullable else clamp(0, self.minimum, self.maximum)
        number = cap_amount(number)
        if self.integer:
            number = round_half_up(number)
        return clamp(number, self.minimum, self.maximum)

    def describe(self):
        text = "integer" if self.integer else "number"
        if self.minimum is not None and self.maximum is not None:
            text += f" {self.minimum}-{self.maximum}"
        elif self.minimum is not None:
            text += f" >= {self.minimum}"
        elif self.maximum is not None:
            text += f" <= {self.maximum}"
        if self.nullable:
            text += " or null"
        return text


class Text(FieldSpec):
    """Non-empty string. Numbers are kept as their string form."""

    def coerce(self, value, scope):
        if isinstance(value, str) and value.strip():
            return value.strip()
        if to_number(value) is not None:
            return str(value)
        return self.default_value(scope)

    def describe(self):
        return "string"


class Choice(FieldSpec):
    """Closed enum. Anything outside the set becomes the default."""

    def __init__(self, name, enum_cls: type[Enum], default, key=None, hint=""):
        super().__init__(name, default, key, hint)
        self.enum_cls = enum_cls

    def coerce(self, value, scope):
        token = normalize_token(value)
        if token is not None:
            try:
                return self.enum_cls(token)
            except ValueError:
                pass
        return self.default_value(scope)

    def describe(self):
        return "one of " + ", ".join(f'"{member.value}"' for member in self.enum_cls)


class Flag(FieldSpec):
    TRUE_TOKENS = {"true", "yes", "1", "y"}
    FALSE_TOKENS = {"false", "no", "0", "n"}

    def __init__(self, name, default=False, key=None, hint=""):
        super().__init__(name, default, key, hint)

    def coerce(self, value, scope):
        if isinstance(value, bool):
            return value
        token = normalize_token(value)
        if token in self.TRUE_TOKENS:
            return True
        if token in self.FALSE_TOKENS:
            return False
        number = to_number(value)
        if number is not None and not isinstance(value, str):
            return number != 0
        return bool(self.default_value(scope))

    def describe(self):
        return "boolean"


class TextList(FieldSpec):
    def __init__(self, name, fallback=(), key=None, hint=""):
        super().__init__(name, fallback, key, hint)

    def coerce(self, value, scope):
        items: list[str] = []
        if isinstance(value, list):
            items = [item.strip() for item in value if isinstance(item, str) and item.strip()]
        if not items:
            items = list(self.default_value(scope) or ())
        return tuple(items)

    def describe(self):
        return "array of strings"


class Derived(FieldSpec):
    """Computed from already-sanitized values; the raw value is ignored."""

    def __init__(self, name, compute: Callable[[Scope], Any], describe_as="integer",
                 internal=False, key=None, hint=""):
        super().__init__(name, compute, key, hint)
        self.describe_as = describe_as
        self.internal = internal

    def coerce(self, value, scope):
        return self.default(scope)

    def describe(self):
        return self.describe_as

    def schema_lines(self, indent):
        return [] if self.internal else super().schema_lines(indent)


class Nested(FieldSpec):
    """
    Sub-record. A bare number in place of the object is read as scalar_key,
    for models that collapse e.g. estimatedValue to a single figure.
    """

    def __init__(self, name, record: "RecordSpec", key=None, scalar_key=None, hint=""):
        super().__init__(name, None, key, hint)
        self.record = record
        self.scalar_key = scalar_key

    def coerce(self, value, scope):
        if self.scalar_key and to_number(value) is not None:
            value = {self.scalar_key: value}
        return self.record.build(value, parent=scope)

    def describe(self):
        return "object"

    def schema_lines(self, indent):
        head = super().schema_lines(indent)
        head[0] += ", with:"
        return head + self.record.schema_lines(indent + 1)


class RecordList(FieldSpec):
    """
    List of sub-records. Non-object entries are dropped.

    fallback(scope) supplies raw entries when the model gave none; a
    placeholder raw entry guarantees at least one element.
    """

    def __init__(self, name, record: "RecordSpec", fallback=None, placeholder: dict | None = None,
                 key=None, hint=""):
        super().__init__(name, fallback, key, hint)
        self.record = record
        self.placeholder = placeholder

    def coerce(self, value, scope):
        entries = [item for item in value if isinstance(item, dict)] if isinstance(value, list) else []
        if not entries and self.default is not None:
            entries = list(self.default_value(scope))
        if not entries and self.placeholder is not None:
            entries = [self.placeholder]
        return tuple(
            self.record.build(entry, parent=scope, index=index)
            for index, entry in enumerate(entries)
        )

    def describe(self):
        return "array of objects"

    def schema_lines(self, indent):
        head = super().schema_lines(indent)
        head[0] += ", each with:"
        return head + self.record.schema_lines(indent + 1)


class RecordSpec:
    """Ordered field table for one model class."""

    def __init__(self, model: type[BaseModel], fields: Iterable[FieldSpec],
                 finalize: Callable[[dict, Scope], dict] | None = None):
        self.model = model
        self.fields = list(fields)
        self.finalize = finalize

    def build(self, raw: Any, parent: Scope | None = None, index: int | None = None,
              extra: dict | None = None):
        source = raw if isinstance(raw, dict) else {}
        values: dict[str, Any] = {}
        meta = {"_raw": source, "_index": index}
        scope = ChainMap(values, meta, *(parent.maps if parent is not None else ()))

        for spec in self.fields:
            values[spec.name] = spec.coerce(spec.lookup(source), scope)

        if self.finalize is not None:
            values.update(self.finalize(values, scope))
        if extra:
            values.update(extra)
        return self.model(**values)

    def schema_lines(self, indent: int = 0) -> list[str]:
        lines: list[str] = []
        for spec in self.fields:
            lines.extend(spec.schema_lines(indent))
        return lines


# --- Damage Tables ---

def _area_at(scope: Scope) -> DamageArea | None:
    areas = scope.get("damage_areas") or ()
    index = scope.get("_index")
    if index is not None and index < len(areas):
        return areas[index]
    return None


def _total_repair_cost(scope: Scope) -> int:
    return scope["overall_assessment"].total_repair_cost


DAMAGE_AREA_SPEC = RecordSpec(DamageArea, [
    Text("id", default=lambda s: f"damage-{(s['_index'] or 0) + 1}"),
    Number("x", 0, minimum=0, hint="pixels"),
    Number("y", 0, minimum=0, hint="pixels"),
    Number("width", 60, minimum=0, hint="pixels"),
    Number("height", 40, minimum=0, hint="pixels"),
    Choice("category", DamageCategory, DamageCategory.SCRATCH, key="type"),
    Choice("severity", Severity, Severity.LOW),
    Number("confidence", 65, 0, 100),
    Text("description", "Additional inspection recommended to confirm this damage.",
         hint="at least two sentences"),
    Choice("region", VehicleRegion, VehicleRegion.FRONT, key="area"),
    Number("repair_cost", 750, minimum=0),
    TextList("parts_affected"),
    Choice("repair_priority", RepairPriority, RepairPriority.NORMAL),
    Choice("safety_impact", SafetyImpact, SafetyImpact.LOW),
    Text("repair_method", "Repair at an authorised service is recommended."),
    Number("estimated_repair_hours", 2, minimum=1, key="estimatedRepairTime", hint="hours"),
    Flag("warranty_impact"),
    Choice("insurance_coverage", InsuranceCoverage, InsuranceCoverage.PARTIAL),
])

MANUAL_REVIEW_AREA = {
    "id": "damage-1",
    "width": 50,
    "height": 50,
    "severity": "minimal",
    "confidence": 40,
    "description": MANUAL_REVIEW_DESCRIPTION,
    "repairCost": 0,
    "safetyImpact": "none",
    "repairMethod": "Professional assessment recommended.",
}

OVERALL_ASSESSMENT_SPEC = RecordSpec(OverallAssessment, [
    Choice("damage_level", DamageLevel, DamageLevel.FAIR),
    Number("total_repair_cost", lambda s: sum(area.repair_cost for area in s["damage_areas"]),
           minimum=0, hint="defaults to the sum of damageAreas[].repairCost"),
    Choice("insurance_status", InsuranceStatus, InsuranceStatus.REPAIRABLE),
    Number("market_value_impact",
           lambda s: math.floor(s["total_repair_cost"] / MARKET_IMPACT_COST_DIVISOR),
           0, 100, hint="percent"),
    Text("detailed_analysis",
         "General inspection completed. The extent of the damage is listed above."),
    Choice("vehicle_condition", VehicleCondition, VehicleCondition.FAIR),
    Number("resale_value",
           lambda s: 100 - math.floor(s["total_repair_cost"] / RESALE_COST_DIVISOR),
           0, 100, hint="percent of undamaged value"),
    Number("depreciation",
           lambda s: math.floor(s["total_repair_cost"] / DEPRECIATION_COST_DIVISOR),
           0, 100, hint="percent"),
])

TECHNICAL_ANALYSIS_SPEC = RecordSpec(TechnicalAnalysis, [
    Choice("structural_integrity", StructuralIntegrity, StructuralIntegrity.INTACT),
    Choice("safety_systems", SystemStatus, SystemStatus.FUNCTIONAL),
    Choice("mechanical_systems", MechanicalStatus, MechanicalStatus.OPERATIONAL),
    Choice("electrical_systems", SystemStatus, SystemStatus.FUNCTIONAL),
    Choice("body_alignment", BodyAlignment, BodyAlignment.PERFECT),
    Flag("frame_damage"),
    Flag("airbag_deployment"),
    Choice("seatbelt_function", SeatbeltFunction, SeatbeltFunction.FUNCTIONAL),
])

SAFETY_ASSESSMENT_SPEC = RecordSpec(SafetyAssessment, [
    Choice("roadworthiness", Roadworthiness, Roadworthiness.SAFE),
    TextList("critical_issues"),
    TextList("safety_recommendations"),
    Flag("inspection_required"),
    TextList("immediate_actions"),
    TextList("long_term_concerns"),
])

COST_ITEM_SPEC = RecordSpec(CostItem, [
    Text("part", lambda s: _area_at(s).category.value if _area_at(s) else "body_panel"),
    Text("description", lambda s: _area_at(s).description if _area_at(s) else "Repair details"),
    Number("cost", lambda s: _area_at(s).repair_cost if _area_at(s) else 0, minimum=0),
])

REPAIR_PHASE_SPEC = RecordSpec(RepairPhase, [
    Text("phase", "Repair"),
    Number("duration_days", 1, minimum=1, key="duration", hint="days"),
    Text("description", "Planned work"),
])

WARRANTY_SPEC = RecordSpec(WarrantyTerms, [
    Flag("covered", default=True),
    Text("duration", "12 months"),
    TextList("conditions", fallback=(
        "Maintenance at an authorised service",
        "Use of original parts",
    )),
])


def _default_breakdown(scope: Scope) -> list[dict]:
    return [
        {"part": area.category.value, "description": area.description, "cost": area.repair_cost}
        for area in scope["damage_areas"]
    ]


def _default_timeline(scope: Scope) -> list[dict]:
    repair_days = max(1, math.ceil(_total_repair_cost(scope) / COST_PER_REPAIR_DAY))
    return [
        {"phase": "Preparation", "duration": 1, "description": "Detailed inspection and parts sourcing"},
        {"phase": "Repair", "duration": repair_days, "description": "Main repair and assembly"},
        {"phase": "Quality control", "duration": 1, "description": "Final inspection and handover"},
    ]


REPAIR_ESTIMATE_SPEC = RecordSpec(RepairEstimate, [
    Derived("total_cost", _total_repair_cost, "integer >= 0",
            hint="equal to overallAssessment.totalRepairCost"),
    Number("labor_cost", lambda s: math.floor(_total_repair_cost(s) * LABOR_SHARE), minimum=0),
    Number("parts_cost", lambda s: math.floor(_total_repair_cost(s) * PARTS_SHARE), minimum=0),
    Number("paint_cost", lambda s: math.floor(_total_repair_cost(s) * PAINT_SHARE), minimum=0),
    Number("additional_costs", 0, minimum=0),
    RecordList("breakdown", COST_ITEM_SPEC, fallback=_default_breakdown),
    RecordList("timeline", REPAIR_PHASE_SPEC, fallback=_default_timeline),
    Nested("warranty", WARRANTY_SPEC),
])

DAMAGE_RESULT_SPEC = RecordSpec(AnalysisResult, [
    RecordList("damage_areas", DAMAGE_AREA_SPEC, placeholder=MANUAL_REVIEW_AREA,
               hint="empty array when no damage is visible"),
    Nested("overall_assessment", OVERALL_ASSESSMENT_SPEC),
    Nested("technical_analysis", TECHNICAL_ANALYSIS_SPEC),
    Nested("safety_assessment", SAFETY_ASSESSMENT_SPEC),
    Nested("repair_estimate", REPAIR_ESTIMATE_SPEC),
    Number("confidence", 85, 0, 100),
])


# --- Valuation Tables ---

ADJUSTMENT_FIELDS = (
    "model_year_adjustment",
    "mileage_adjustment",
    "paint_adjustment",
    "body_adjustment",
    "damage_adjustment",
    "market_adjustment",
)


def _recommended(scope: Scope) -> int:
    return scope["estimated_value"].recommended_value


def _midpoint_of_raw_range(scope: Scope) -> float:
    raw = scope["_raw"]
    low = to_number(raw.get("minValue"))
    high = to_number(raw.get("maxValue"))
    if low is not None:
        low = cap_amount(low)
    if high is not None:
        high = cap_amount(high)
    if low is not None and high is not None:
        return (low + high) / 2
    return low if low is not None else (high if high is not None else 0)


def _order_value_range(values: dict, scope: Scope) -> dict:
    recommended = values["recommended_value"]
    return {
        "min_value": min(values["min_value"], recommended),
        "max_value": max(values["max_value"], recommended),
    }


def _order_price_range(values: dict, scope: Scope) -> dict:
    low, high = sorted((values["min_price"], values["max_price"]))
    return {"min_price": low, "max_price": high}


def _damage_deduction(scope: Scope) -> int:
    damage = scope.get("damage_context")
    return -damage.overall_assessment.total_repair_cost if damage is not None else 0


def _condition_baseline(scope: Scope) -> int:
    damage = scope.get("damage_context")
    return damage.overall_assessment.resale_value if damage is not None else 70


def _adjustment_total(scope: Scope) -> int:
    return sum(scope[name] for name in ADJUSTMENT_FIELDS)


ESTIMATED_VALUE_SPEC = RecordSpec(EstimatedValue, [
    Number("recommended_value", _midpoint_of_raw_range, minimum=0),
    Number("min_value", lambda s: s["recommended_value"] * 0.95, minimum=0),
    Number("max_value", lambda s: s["recommended_value"] * 1.05, minimum=0),
    Number("quick_sale_value", lambda s: s["recommended_value"] * 0.93, minimum=0),
    Text("currency", DEFAULT_CURRENCY),
], finalize=_order_value_range)

PRICE_RANGE_SPEC = RecordSpec(PriceRange, [
    Number("min_price", lambda s: s["estimated_value"].min_value, minimum=0, key="min"),
    Number("max_price", lambda s: s["estimated_value"].max_value, minimum=0, key="max"),
], finalize=_order_price_range)

MARKET_ANALYSIS_SPEC = RecordSpec(MarketAnalysis, [
    Number("average_price", _recommended, minimum=0),
    Nested("price_range", PRICE_RANGE_SPEC),
    Choice("trend", MarketTrend, MarketTrend.STABLE),
    Choice("demand", MarketPressure, MarketPressure.MEDIUM),
    Choice("supply", MarketPressure, MarketPressure.MEDIUM),
    Text("time_to_sell", "15-30 days"),
])

CONDITION_SPEC = RecordSpec(ConditionSummary, [
    Number("overall_score", _condition_baseline, 0, 100),
    Number("paint_score", lambda s: s["overall_score"], 0, 100),
    Number("body_score", lambda s: s["overall_score"], 0, 100),
    Number("mechanical_score", lambda s: s["overall_score"], 0, 100),
    Text("description", "Condition assessed from the supplied information."),
])

PRICE_BREAKDOWN_SPEC = RecordSpec(PriceBreakdown, [
    Number("model_year_adjustment", 0, hint="signed"),
    Number("mileage_adjustment", 0, hint="signed"),
    Number("paint_adjustment", 0, hint="signed"),
    Number("body_adjustment", 0, hint="signed"),
    Number("damage_adjustment", _damage_deduction, maximum=0,
           hint="minus the repair cost of known damage"),
    Number("market_adjustment", 0, hint="signed"),
    Number("base_price", lambda s: s["estimated_value"].recommended_value - _adjustment_total(s),
           minimum=0, hint="price of the same vehicle new"),
    Derived("final_value", lambda s: max(0, s["base_price"] + _adjustment_total(s)), "integer >= 0",
            hint="basePrice plus every adjustment"),
])

MARKET_POSITION_SPEC = RecordSpec(MarketPosition, [
    Number("percentile", 50, 0, 100),
    Choice("segment", MarketSegment, MarketSegment.AT_MARKET),
    Text("competitiveness", "Priced in line with comparable listings."),
])

INVESTMENT_ANALYSIS_SPEC = RecordSpec(InvestmentAnalysis, [
    Number("annual_depreciation_rate", 10, 0, 100, hint="percent"),
    Number("value_in_one_year",
           lambda s: _recommended(s) * (100 - s["annual_depreciation_rate"]) / 100, minimum=0),
    Choice("outlook", Outlook, Outlook.NEUTRAL),
    Text("summary", "No investment commentary was provided."),
])

IMPROVEMENT_SPEC = RecordSpec(Improvement, [
    Text("action", "Detailing"),
    Number("cost", 0, minimum=0),
    Number("value_increase", 0, minimum=0),
])

RECOMMENDATIONS_SPEC = RecordSpec(ValuationRecommendations, [
    Number("asking_price", _recommended, minimum=0),
    Number("minimum_price", lambda s: s["estimated_value"].min_value, minimum=0),
    Text("negotiation_margin", "3-5%"),
    Number("max_purchase_price", _recommended, minimum=0),
    Number("target_purchase_price", lambda s: s["estimated_value"].quick_sale_value, minimum=0),
    RecordList("improvements", IMPROVEMENT_SPEC),
])

COMPARABLE_SPEC = RecordSpec(ComparableVehicle, [
    Text("description", "Comparable listing"),
    Number("year", None, minimum=1900, maximum=2100, nullable=True),
    Number("price", 0, minimum=0),
    Number("mileage", None, minimum=0, nullable=True),
])


def _append_context_note(values: dict, scope: Scope) -> dict:
    if values["damage_context_available"] or NO_DAMAGE_CONTEXT_NOTE in values["notes"]:
        return {}
    return {"notes": values["notes"] + (NO_DAMAGE_CONTEXT_NOTE,)}


VALUATION_RESULT_SPEC = RecordSpec(ValuationResult, [
    Nested("estimated_value", ESTIMATED_VALUE_SPEC, scalar_key="recommendedValue"),
    Nested("market_analysis", MARKET_ANALYSIS_SPEC),
    Nested("condition", CONDITION_SPEC),
    Nested("price_breakdown", PRICE_BREAKDOWN_SPEC),
    Nested("market_position", MARKET_POSITION_SPEC),
    Nested("investment_analysis", INVESTMENT_ANALYSIS_SPEC),
    Nested("recommendations", RECOMMENDATIONS_SPEC),
    RecordList("comparable_vehicles", COMPARABLE_SPEC),
    TextList("notes"),
    Derived("damage_context_available", lambda s: s.get("damage_context") is not None,
            internal=True),
    Number("confidence", lambda s: 85 if s.get("damage_context") is not None else 75, 0, 100),
], finalize=_append_context_note)


# --- Paint Tables ---

def condition_for_score(score: int) -> PaintCondition:
    if score >= 85:
        return PaintCondition.EXCELLENT
    if score >= 70:
        return PaintCondition.GOOD
    if score >= 50:
        return PaintCondition.FAIR
    if score >= 30:
        return PaintCondition.POOR
    return PaintCondition.CRITICAL


def _layer_total(scope: Scope) -> int:
    return scope["primer_thickness"] + scope["base_coat_thickness"] + scope["clear_coat_thickness"]


def _defect_repair_total(scope: Scope) -> int:
    return sum(defect.repair_cost for defect in scope["defects"])


PAINT_QUALITY_SPEC = RecordSpec(PaintQuality, [
    Number("overall_score", 70, 0, 100),
    Number("gloss", lambda s: s["overall_score"], 0, 100),
    Number("smoothness", lambda s: s["overall_score"], 0, 100),
    Number("uniformity", lambda s: s["overall_score"], 0, 100),
    Number("adhesion", lambda s: s["overall_score"], 0, 100),
    Number("uv_protection", lambda s: s["overall_score"], 0, 100),
])

COLOR_ANALYSIS_SPEC = RecordSpec(ColorAnalysis, [
    Text("color_code", "unknown"),
    Text("color_name", "unknown"),
    Flag("metallic"),
    Flag("pearl"),
    Number("color_match", 90, 0, 100, hint="percent match between panels"),
    Number("fading", 0, 0, 100),
    Flag("original_color", default=True),
    Flag("repaint_detected", hint="true when any panel shows a non-factory finish"),
])

SURFACE_ANALYSIS_SPEC = RecordSpec(SurfaceAnalysis, [
    Number("primer_thickness", PRIMER_MICRONS, minimum=0, hint="microns"),
    Number("base_coat_thickness", BASE_COAT_MICRONS, minimum=0, hint="microns"),
    Number("clear_coat_thickness", CLEAR_COAT_MICRONS, minimum=0, hint="microns"),
    Number("total_thickness", _layer_total, minimum=0, hint="microns"),
    Number("thickness_uniformity", 80, 0, 100),
    Number("orange_peel", 0, 0, 100),
    Number("contamination", 0, 0, 100),
])

PAINT_DEFECT_SPEC = RecordSpec(PaintDefect, [
    Text("id", default=lambda s: f"paint-defect-{(s['_index'] or 0) + 1}"),
    Choice("defect_type", PaintDefectType, PaintDefectType.CONTAMINATION, key="type"),
    Choice("severity", Severity, Severity.LOW),
    Text("location", "unspecified"),
    Number("size_cm2", 0, minimum=0, key="size", hint="square centimetres"),
    Text("description", "Finish irregularity; closer inspection recommended."),
    Flag("repairable", default=True),
    Number("repair_cost", 0, minimum=0),
])

PAINT_TECHNICAL_SPEC = RecordSpec(PaintTechnicalDetails, [
    Text("paint_system", "unknown"),
    Choice("quality_class", PaintQualityClass, PaintQualityClass.UNKNOWN),
    Number("layer_count", None, minimum=1, nullable=True),
    Number("paint_age_years", None, minimum=0, nullable=True),
])

PAINT_RECOMMENDATIONS_SPEC = RecordSpec(PaintRecommendations, [
    TextList("urgent"),
    TextList("short_term"),
    TextList("long_term"),
    TextList("maintenance", fallback=("Wash and wax regularly",)),
    TextList("protection"),
])

PAINT_COST_SPEC = RecordSpec(PaintCostEstimate, [
    Number("total_cost", _defect_repair_total, minimum=0,
           hint="defaults to the sum of defects[].repairCost"),
    Number("labor_cost", lambda s: math.floor(s["total_cost"] * LABOR_SHARE), minimum=0),
    Number("material_cost", lambda s: s["total_cost"] - s["labor_cost"], minimum=0),
    Number("duration_hours", lambda s: PAINT_HOURS_PER_DEFECT * len(s["defects"]), minimum=0),
])

PAINT_RESULT_SPEC = RecordSpec(PaintResult, [
    Nested("paint_quality", PAINT_QUALITY_SPEC),
    Choice("paint_condition", PaintCondition,
           lambda s: condition_for_score(s["paint_quality"].overall_score)),
    Nested("color_analysis", COLOR_ANALYSIS_SPEC),
    Nested("surface_analysis", SURFACE_ANALYSIS_SPEC),
    RecordList("defects", PAINT_DEFECT_SPEC, hint="finish defects only; empty array when none"),
    Number("defect_score", 0, 0, 100, hint="0 = flawless"),
    Nested("technical_details", PAINT_TECHNICAL_SPEC),
    Nested("recommendations", PAINT_RECOMMENDATIONS_SPEC),
    Nested("cost_estimate", PAINT_COST_SPEC),
    Number("confidence", 80, 0, 100),
])


# --- Comprehensive Report Tables ---

def grade_for_score(score: int) -> ExpertiseGrade:
    if score >= 85:
        return ExpertiseGrade.EXCELLENT
    if score >= 70:
        return ExpertiseGrade.GOOD
    if score >= 50:
        return ExpertiseGrade.FAIR
    if score >= 30:
        return ExpertiseGrade.POOR
    return ExpertiseGrade.CRITICAL


def _baseline_score(scope: Scope) -> int:
    damage = scope.get("damage_context")
    return damage.overall_assessment.resale_value if damage is not None else 50


def _urgent_actions_from_context(scope: Scope) -> list[dict]:
    actions = []
    damage = scope.get("damage_context")
    if damage is not None:
        actions.extend(
            {"priority": "high", "action": action, "benefit": "Restores roadworthiness"}
            for action in damage.safety_assessment.immediate_actions
        )
    paint = scope.get("paint_context")
    if paint is not None:
        actions.extend(
            {"priority": "medium", "action": action, "benefit": "Protects the finish"}
            for action in paint.recommendations.urgent
        )
    return actions


def _purchase_price(scope: Scope) -> int:
    valuation = scope.get("valuation_context")
    return valuation.estimated_value.recommended_value if valuation is not None else 0


def _immediate_repairs(scope: Scope) -> int:
    damage = scope.get("damage_context")
    return damage.overall_assessment.total_repair_cost if damage is not None else 0


def _resale_estimate(scope: Scope) -> int:
    valuation = scope.get("valuation_context")
    if valuation is not None:
        return valuation.investment_analysis.value_in_one_year
    return scope["purchase_price"]


def _roi(scope: Scope) -> float:
    total = scope["total_investment"]
    return scope["expected_profit"] * 100 / total if total else 0


SUMMARY_SPEC = RecordSpec(ComprehensiveSummary, [
    Text("vehicle_overview",
         "The analysis completed but no detailed overview could be produced; "
         "please check the supplied photos."),
    TextList("key_findings"),
    TextList("critical_issues"),
    TextList("strengths"),
    TextList("weaknesses"),
    Text("overall_condition", "Insufficient data"),
    Text("market_position", "Undetermined"),
    Text("investment_potential", "Undetermined"),
])

RISK_SPEC = RecordSpec(RiskAssessment, [
    Choice("level", RiskLevel, RiskLevel.MEDIUM),
    TextList("factors"),
])

OPPORTUNITY_SPEC = RecordSpec(OpportunityAssessment, [
    Choice("level", OpportunityLevel, OpportunityLevel.FAIR),
    TextList("factors"),
])

EXPERT_OPINION_SPEC = RecordSpec(ExpertOpinion, [
    Choice("recommendation", PurchaseRecommendation, PurchaseRecommendation.NEUTRAL),
    TextList("reasoning", fallback=("Not enough data was provided for a firm recommendation.",)),
    Nested("risk_assessment", RISK_SPEC),
    Nested("opportunity_assessment", OPPORTUNITY_SPEC),
    TextList("expert_notes"),
])

ACTION_ITEM_SPEC = RecordSpec(ActionItem, [
    Text("priority", "normal"),
    Text("action", "Review with an expert"),
    Number("cost", 0, minimum=0),
    Text("benefit", "Not specified"),
])

MAINTENANCE_ITEM_SPEC = RecordSpec(MaintenanceItem, [
    Text("frequency", "Yearly"),
    Text("action", "Scheduled maintenance"),
    Number("cost", 0, minimum=0),
])

FINAL_RECOMMENDATIONS_SPEC = RecordSpec(FinalRecommendations, [
    RecordList("immediate", ACTION_ITEM_SPEC, fallback=_urgent_actions_from_context),
    RecordList("short_term", ACTION_ITEM_SPEC),
    RecordList("long_term", ACTION_ITEM_SPEC),
    RecordList("maintenance", MAINTENANCE_ITEM_SPEC),
])

FINANCIAL_SUMMARY_SPEC = RecordSpec(FinancialSummary, [
    Number("purchase_price", _purchase_price, minimum=0),
    Number("immediate_repairs", _immediate_repairs, minimum=0),
    Number("monthly_maintenance", 0, minimum=0),
    Number("estimated_resale_value", _resale_estimate, minimum=0),
    Number("total_investment", lambda s: s["purchase_price"] + s["immediate_repairs"], minimum=0),
    Number("expected_profit", lambda s: s["estimated_resale_value"] - s["total_investment"],
           hint="signed"),
    Number("roi", _roi, hint="signed percent"),
])

INVESTMENT_DECISION_SPEC = RecordSpec(InvestmentDecision, [
    Nested("financial_summary", FINANCIAL_SUMMARY_SPEC),
    Choice("decision", InvestmentVerdict, InvestmentVerdict.FAIR_INVESTMENT),
    Number("expected_return", lambda s: s["financial_summary"].roi, hint="signed percent"),
    Text("payback_period", "Undetermined"),
    Choice("risk_level", RiskLevel, RiskLevel.MEDIUM),
    Number("liquidity_score", 50, 0, 100),
    Text("market_timing", "Neutral"),
])

COMPREHENSIVE_RESULT_SPEC = RecordSpec(ComprehensiveResult, [
    Number("overall_score", _baseline_score, 0, 100),
    Choice("expertise_grade", ExpertiseGrade, lambda s: grade_for_score(s["overall_score"])),
    Nested("summary", SUMMARY_SPEC, key="comprehensiveSummary"),
    Nested("expert_opinion", EXPERT_OPINION_SPEC),
    Nested("final_recommendations", FINAL_RECOMMENDATIONS_SPEC),
    Nested("investment_decision", INVESTMENT_DECISION_SPEC),
    Number("confidence", 50, 0, 100),
])


# --- Public API ---

def _provenance_fields(provenance: Provenance) -> dict:
    return {
        "provider": provenance.provider,
        "model": provenance.model,
        "analysis_timestamp": provenance.timestamp,
    }


def sanitize_damage(raw: Any, provenance: Provenance) -> AnalysisResult:
    """Damage payload -> AnalysisResult. Total: never raises."""
    return DAMAGE_RESULT_SPEC.build(raw, extra=_provenance_fields(provenance))


def sanitize_valuation(
    raw: Any,
    provenance: Provenance,
    damage: AnalysisResult | None = None,
) -> ValuationResult:
    """
    Valuation payload -> ValuationResult. Total: never raises.

    Without a damage result the damage adjustment defaults to zero and the
    notes say so.
    """
    context = ChainMap({"damage_context": damage})
    return VALUATION_RESULT_SPEC.build(raw, parent=context, extra=_provenance_fields(provenance))


def sanitize_paint(raw: Any, provenance: Provenance) -> PaintResult:
    """Paint payload -> PaintResult. Total: never raises."""
    return PAINT_RESULT_SPEC.build(raw, extra=_provenance_fields(provenance))


def sanitize_comprehensive(
    raw: Any,
    provenance: Provenance,
    damage: AnalysisResult | None = None,
    valuation: ValuationResult | None = None,
    paint: PaintResult | None = None,
) -> ComprehensiveResult:
    """Comprehensive payload -> ComprehensiveResult, embedding its prerequisites."""
    context = ChainMap({
        "damage_context": damage,
        "valuation_context": valuation,
        "paint_context": paint,
    })
    extra = _provenance_fields(provenance)
    extra.update(damage_analysis=damage, valuation=valuation, paint_analysis=paint)
    return COMPREHENSIVE_RESULT_SPEC.build(raw, parent=context, extra=extra)
