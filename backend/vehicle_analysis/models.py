"""
Domain models for the vehicle analysis pipeline.

All Pydantic models and exceptions in one place. Imported by the sanitizer,
prompt builder, orchestrator, and storage modules. Single source of truth for
data contracts.

Every result model is frozen and stores its lists as tuples: a sanitized
result may be cached and handed to several callers, none of whom may change
it under the others.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class AnalysisKind(str, Enum):
    """
    Analysis kinds. Inherits str so kinds double as config keys and
    serialize to "damage" / "valuation" / "comprehensive" / "paint".
    """
    DAMAGE = "damage"
    VALUATION = "valuation"
    COMPREHENSIVE = "comprehensive"
    PAINT = "paint"


# --- Damage Enums ---

class DamageCategory(str, Enum):
    SCRATCH = "scratch"
    DENT = "dent"
    RUST = "rust"
    OXIDATION = "oxidation"
    CRACK = "crack"
    BREAK = "break"
    PAINT_DAMAGE = "paint_damage"
    STRUCTURAL = "structural"
    MECHANICAL = "mechanical"
    ELECTRICAL = "electrical"


class Severity(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class VehicleRegion(str, Enum):
    FRONT = "front"
    REAR = "rear"
    LEFT = "left"
    RIGHT = "right"
    TOP = "top"
    BOTTOM = "bottom"
    INTERIOR = "interior"
    MECHANICAL = "mechanical"


class RepairPriority(str, Enum):
    IMMEDIATE = "immediate"
    URGENT = "urgent"
    NORMAL = "normal"
    COSMETIC = "cosmetic"


class SafetyImpact(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class InsuranceCoverage(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


class DamageLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    TOTAL_LOSS = "total_loss"


class InsuranceStatus(str, Enum):
    REPAIRABLE = "repairable"
    TOTAL_LOSS = "total_loss"
    ECONOMICAL_REPAIR = "economical_repair"


class VehicleCondition(str, Enum):
    LIKE_NEW = "like_new"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    DAMAGED = "damaged"


class StructuralIntegrity(str, Enum):
    INTACT = "intact"
    MINOR_DAMAGE = "minor_damage"
    MODERATE_DAMAGE = "moderate_damage"
    SEVERE_DAMAGE = "severe_damage"
    COMPROMISED = "compromised"


class SystemStatus(str, Enum):
    """Safety and electrical systems."""
    FUNCTIONAL = "functional"
    MINOR_ISSUES = "minor_issues"
    MAJOR_ISSUES = "major_issues"
    NON_FUNCTIONAL = "non_functional"
    NEEDS_INSPECTION = "needs_inspection"


class MechanicalStatus(str, Enum):
    OPERATIONAL = "operational"
    MINOR_ISSUES = "minor_issues"
    MAJOR_ISSUES = "major_issues"
    NON_OPERATIONAL = "non_operational"
    NEEDS_INSPECTION = "needs_inspection"


class BodyAlignment(str, Enum):
    PERFECT = "perfect"
    MINOR_DEVIATION = "minor_deviation"
    MODERATE_DEVIATION = "moderate_deviation"
    SEVERE_DEVIATION = "severe_deviation"


class SeatbeltFunction(str, Enum):
    FUNCTIONAL = "functional"
    NEEDS_INSPECTION = "needs_inspection"
    NON_FUNCTIONAL = "non_functional"


class Roadworthiness(str, Enum):
    SAFE = "safe"
    CONDITIONAL = "conditional"
    UNSAFE = "unsafe"


# --- Valuation Enums ---

class MarketTrend(str, Enum):
    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"


class MarketPressure(str, Enum):
    """Demand or supply level."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MarketSegment(str, Enum):
    BELOW_MARKET = "below_market"
    AT_MARKET = "at_market"
    ABOVE_MARKET = "above_market"


class Outlook(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# --- Paint Enums ---

class PaintCondition(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


class PaintDefectType(str, Enum):
    ORANGE_PEEL = "orange_peel"
    RUN = "run"
    SAG = "sag"
    DIRT = "dirt"
    CONTAMINATION = "contamination"
    FISH_EYE = "fish_eye"
    CRATER = "crater"
    BLISTER = "blister"
    CRACK = "crack"
    PEELING = "peeling"
    FADING = "fading"
    COLOR_MISMATCH = "color_mismatch"


class PaintQualityClass(str, Enum):
    OEM = "oem"
    AFTERMARKET = "aftermarket"
    UNKNOWN = "unknown"


# --- Comprehensive Report Enums ---

class ExpertiseGrade(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


class PurchaseRecommendation(str, Enum):
    STRONGLY_BUY = "strongly_buy"
    BUY = "buy"
    NEUTRAL = "neutral"
    AVOID = "avoid"
    STRONGLY_AVOID = "strongly_avoid"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class OpportunityLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class InvestmentVerdict(str, Enum):
    EXCELLENT_INVESTMENT = "excellent_investment"
    GOOD_INVESTMENT = "good_investment"
    FAIR_INVESTMENT = "fair_investment"
    POOR_INVESTMENT = "poor_investment"
    AVOID = "avoid"


# --- Request Context ---

class VehicleInfo(_Record):
    """Caller-supplied vehicle metadata. Every attribute is optional."""
    make: str | None = None
    model: str | None = None
    year: int | None = None
    plate: str | None = None
    mileage: int | None = Field(None, ge=0)


class Provenance(_Record):
    """Who produced a result, and when."""
    provider: str
    model: str
    timestamp: str


# --- Damage Context ---

class DamageArea(_Record):
    id: str
    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(ge=0)
    height: int = Field(ge=0)
    category: DamageCategory
    severity: Severity
    confidence: int = Field(ge=0, le=100)
    description: str = Field(min_length=1)
    region: VehicleRegion
    repair_cost: int = Field(ge=0)
    parts_affected: tuple[str, ...] = ()
    repair_priority: RepairPriority
    safety_impact: SafetyImpact
    repair_method: str
    estimated_repair_hours: int = Field(ge=1)
    warranty_impact: bool
    insurance_coverage: InsuranceCoverage


class OverallAssessment(_Record):
    damage_level: DamageLevel
    total_repair_cost: int = Field(ge=0)
    insurance_status: InsuranceStatus
    market_value_impact: int = Field(ge=0, le=100)
    detailed_analysis: str
    vehicle_condition: VehicleCondition
    resale_value: int = Field(ge=0, le=100)
    depreciation: int = Field(ge=0, le=100)


class TechnicalAnalysis(_Record):
    structural_integrity: StructuralIntegrity
    safety_systems: SystemStatus
    mechanical_systems: MechanicalStatus
    electrical_systems: SystemStatus
    body_alignment: BodyAlignment
    frame_damage: bool
    airbag_deployment: bool
    seatbelt_function: SeatbeltFunction


class SafetyAssessment(_Record):
    roadworthiness: Roadworthiness
    critical_issues: tuple[str, ...] = ()
    safety_recommendations: tuple[str, ...] = ()
    inspection_required: bool
    immediate_actions: tuple[str, ...] = ()
    long_term_concerns: tuple[str, ...] = ()


class CostItem(_Record):
    part: str
    description: str
    cost: int = Field(ge=0)


class RepairPhase(_Record):
    phase: str
    duration_days: int = Field(ge=1)
    description: str


class WarrantyTerms(_Record):
    covered: bool
    duration: str
    conditions: tuple[str, ...] = ()


class RepairEstimate(_Record):
    total_cost: int = Field(ge=0)
    labor_cost: int = Field(ge=0)
    parts_cost: int = Field(ge=0)
    paint_cost: int = Field(ge=0)
    additional_costs: int = Field(ge=0)
    breakdown: tuple[CostItem, ...] = ()
    timeline: tuple[RepairPhase, ...] = ()
    warranty: WarrantyTerms


class AnalysisResult(_Record):
    """Sanitized damage assessment."""
    damage_areas: tuple[DamageArea, ...] = Field(min_length=1)
    overall_assessment: OverallAssessment
    technical_analysis: TechnicalAnalysis
    safety_assessment: SafetyAssessment
    repair_estimate: RepairEstimate
    provider: str
    model: str
    confidence: int = Field(ge=0, le=100)
    analysis_timestamp: str


# --- Valuation Context ---

class EstimatedValue(_Record):
    recommended_value: int = Field(ge=0)
    min_value: int = Field(ge=0)
    max_value: int = Field(ge=0)
    quick_sale_value: int = Field(ge=0)
    currency: str


class PriceRange(_Record):
    min_price: int = Field(ge=0)
    max_price: int = Field(ge=0)


class MarketAnalysis(_Record):
    average_price: int = Field(ge=0)
    price_range: PriceRange
    trend: MarketTrend
    demand: MarketPressure
    supply: MarketPressure
    time_to_sell: str


class ConditionSummary(_Record):
    overall_score: int = Field(ge=0, le=100)
    paint_score: int = Field(ge=0, le=100)
    body_score: int = Field(ge=0, le=100)
    mechanical_score: int = Field(ge=0, le=100)
    description: str


class PriceBreakdown(_Record):
    """
    Additive price terms.

    final_value == max(0, base_price + every adjustment). Adjustments are
    signed; the damage adjustment is never positive.
    """
    base_price: int = Field(ge=0)
    model_year_adjustment: int
    mileage_adjustment: int
    paint_adjustment: int
    body_adjustment: int
    damage_adjustment: int = Field(le=0)
    market_adjustment: int
    final_value: int = Field(ge=0)


class MarketPosition(_Record):
    percentile: int = Field(ge=0, le=100)
    segment: MarketSegment
    competitiveness: str


class InvestmentAnalysis(_Record):
    annual_depreciation_rate: int = Field(ge=0, le=100)
    value_in_one_year: int = Field(ge=0)
    outlook: Outlook
    summary: str


class Improvement(_Record):
    action: str
    cost: int = Field(ge=0)
    value_increase: int = Field(ge=0)


class ValuationRecommendations(_Record):
    asking_price: int = Field(ge=0)
    minimum_price: int = Field(ge=0)
    negotiation_margin: str
    max_purchase_price: int = Field(ge=0)
    target_purchase_price: int = Field(ge=0)
    improvements: tuple[Improvement, ...] = ()


class ComparableVehicle(_Record):
    description: str
    year: int | None = Field(None, ge=0)
    price: int = Field(ge=0)
    mileage: int | None = Field(None, ge=0)


class ValuationResult(_Record):
    """Sanitized market valuation."""
    estimated_value: EstimatedValue
    market_analysis: MarketAnalysis
    condition: ConditionSummary
    price_breakdown: PriceBreakdown
    market_position: MarketPosition
    investment_analysis: InvestmentAnalysis
    recommendations: ValuationRecommendations
    comparable_vehicles: tuple[ComparableVehicle, ...] = ()
    notes: tuple[str, ...] = ()
    damage_context_available: bool
    provider: str
    model: str
    confidence: int = Field(ge=0, le=100)
    analysis_timestamp: str


# --- Paint Context ---

class PaintQuality(_Record):
    overall_score: int = Field(ge=0, le=100)
    gloss: int = Field(ge=0, le=100)
    smoothness: int = Field(ge=0, le=100)
    uniformity: int = Field(ge=0, le=100)
    adhesion: int = Field(ge=0, le=100)
    uv_protection: int = Field(ge=0, le=100)


class ColorAnalysis(_Record):
    color_code: str
    color_name: str
    metallic: bool
    pearl: bool
    color_match: int = Field(ge=0, le=100)
    fading: int = Field(ge=0, le=100)
    original_color: bool
    repaint_detected: bool


class SurfaceAnalysis(_Record):
    """Layer thicknesses in microns."""
    primer_thickness: int = Field(ge=0)
    base_coat_thickness: int = Field(ge=0)
    clear_coat_thickness: int = Field(ge=0)
    total_thickness: int = Field(ge=0)
    thickness_uniformity: int = Field(ge=0, le=100)
    orange_peel: int = Field(ge=0, le=100)
    contamination: int = Field(ge=0, le=100)


class PaintDefect(_Record):
    id: str
    defect_type: PaintDefectType
    severity: Severity
    location: str
    size_cm2: int = Field(ge=0)
    description: str = Field(min_length=1)
    repairable: bool
    repair_cost: int = Field(ge=0)


class PaintTechnicalDetails(_Record):
    paint_system: str
    quality_class: PaintQualityClass
    layer_count: int | None = Field(default=None, ge=1)
    paint_age_years: int | None = Field(default=None, ge=0)


class PaintRecommendations(_Record):
    urgent: tuple[str, ...] = ()
    short_term: tuple[str, ...] = ()
    long_term: tuple[str, ...] = ()
    maintenance: tuple[str, ...] = ()
    protection: tuple[str, ...] = ()


class PaintCostEstimate(_Record):
    total_cost: int = Field(ge=0)
    labor_cost: int = Field(ge=0)
    material_cost: int = Field(ge=0)
    duration_hours: int = Field(ge=0)


class PaintResult(_Record):
    """Sanitized paint and finish analysis."""
    paint_quality: PaintQuality
    paint_condition: PaintCondition
    color_analysis: ColorAnalysis
    surface_analysis: SurfaceAnalysis
    defects: tuple[PaintDefect, ...] = ()
    defect_score: int = Field(ge=0, le=100)
    technical_details: PaintTechnicalDetails
    recommendations: PaintRecommendations
    cost_estimate: PaintCostEstimate
    provider: str
    model: str
    confidence: int = Field(ge=0, le=100)
    analysis_timestamp: str


# --- Comprehensive Report Context ---

class ComprehensiveSummary(_Record):
    vehicle_overview: str
    key_findings: tuple[str, ...] = ()
    critical_issues: tuple[str, ...] = ()
    strengths: tuple[str, ...] = ()
    weaknesses: tuple[str, ...] = ()
    overall_condition: str
    market_position: str
    investment_potential: str


class RiskAssessment(_Record):
    level: RiskLevel
    factors: tuple[str, ...] = ()


class OpportunityAssessment(_Record):
    level: OpportunityLevel
    factors: tuple[str, ...] = ()


class ExpertOpinion(_Record):
    recommendation: PurchaseRecommendation
    reasoning: tuple[str, ...] = ()
    risk_assessment: RiskAssessment
    opportunity_assessment: OpportunityAssessment
    expert_notes: tuple[str, ...] = ()


class ActionItem(_Record):
    priority: str
    action: str
    cost: int = Field(ge=0)
    benefit: str


class MaintenanceItem(_Record):
    frequency: str
    action: str
    cost: int = Field(ge=0)


class FinalRecommendations(_Record):
    immediate: tuple[ActionItem, ...] = ()
    short_term: tuple[ActionItem, ...] = ()
    long_term: tuple[ActionItem, ...] = ()
    maintenance: tuple[MaintenanceItem, ...] = ()


class FinancialSummary(_Record):
    purchase_price: int = Field(ge=0)
    immediate_repairs: int = Field(ge=0)
    monthly_maintenance: int = Field(ge=0)
    estimated_resale_value: int = Field(ge=0)
    total_investment: int = Field(ge=0)
    expected_profit: int
    roi: int


class InvestmentDecision(_Record):
    decision: InvestmentVerdict
    expected_return: int
    payback_period: str
    risk_level: RiskLevel
    liquidity_score: int = Field(ge=0, le=100)
    market_timing: str
    financial_summary: FinancialSummary


class ComprehensiveResult(_Record):
    """Sanitized full expertise report, embedding its prerequisites."""
    overall_score: int = Field(ge=0, le=100)
    expertise_grade: ExpertiseGrade
    summary: ComprehensiveSummary
    expert_opinion: ExpertOpinion
    final_recommendations: FinalRecommendations
    investment_decision: InvestmentDecision
    damage_analysis: AnalysisResult | None = None
    valuation: ValuationResult | None = None
    paint_analysis: PaintResult | None = None
    provider: str
    model: str
    confidence: int = Field(ge=0, le=100)
    analysis_timestamp: str


# --- Exceptions ---

class AnalysisError(Exception):
    """Base of the pipeline error taxonomy."""
    retryable: bool = False
    error_kind: str = "ANALYSIS_ERROR"


class ModelInvocationError(AnalysisError):
    """Inference service call failed in a way no narrower kind describes."""
    error_kind = "MODEL_INVOCATION_ERROR"


class TransportError(ModelInvocationError):
    """Network failure or timeout."""
    retryable = True
    error_kind = "TRANSPORT_ERROR"


class QuotaError(ModelInvocationError):
    """Provider rate limit or quota exhausted."""
    retryable = True
    error_kind = "QUOTA_ERROR"


class UnsupportedModelError(ModelInvocationError):
    """Model or route not found. Operator must fix configuration."""
    error_kind = "UNSUPPORTED_MODEL"


class EmptyReplyError(ModelInvocationError):
    """Reply arrived but carried no text."""
    retryable = True
    error_kind = "EMPTY_REPLY"


class PayloadNotFoundError(AnalysisError):
    """No parseable JSON object in the reply."""
    retryable = True
    error_kind = "PAYLOAD_NOT_FOUND"


class PrerequisiteFailedError(AnalysisError):
    """A chained analysis ran without the context of a failed prerequisite."""
    error_kind = "PREREQUISITE_FAILED"


class InvalidImageError(AnalysisError):
    """Attachment is unreadable or violates image constraints."""
    error_kind = "INVALID_IMAGE"


class AnalysisFailedError(AnalysisError):
    """
    Terminal failure of one analysis kind, handed to the route layer.

    Carries enough for the caller to decide between refunding a credit,
    retrying later, or showing a generic failure state.
    """
    error_kind = "ANALYSIS_FAILED"

    def __init__(self, kind: str, error_kind: str, cause: str):
        super().__init__(f"{kind} analysis failed ({error_kind}): {cause}")
        self.kind = kind
        self.failure_kind = error_kind
        self.cause = cause

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "error_kind": self.failure_kind,
            "cause": self.cause,
        }


class StorageError(Exception):
    """Database operation failed."""
    pass


class ResultNotFoundError(Exception):
    """Requested analysis result does not exist."""
    pass
