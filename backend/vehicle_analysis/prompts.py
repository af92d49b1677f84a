"""
Prompt building - deterministic instructions for each analysis kind.

Every prompt has the same four parts: the output contract, the field schema
(generated from the sanitizer tables so the two cannot drift), a worked
example, and the critical rules. The same context always yields the same
text: nothing here reads the clock; the caller passes reference_year.
"""

import json
from dataclasses import dataclass

from vehicle_analysis.models import (
    AnalysisKind,
    AnalysisResult,
    PaintResult,
    ValuationResult,
    VehicleInfo,
)
from vehicle_analysis.sanitizer import (
    DAMAGE_RESULT_SPEC,
    VALUATION_RESULT_SPEC,
    COMPREHENSIVE_RESULT_SPEC,
    PAINT_RESULT_SPEC,
    RecordSpec,
)
from vehicle_analysis.config import KM_PER_YEAR


@dataclass(frozen=True)
class PromptContext:
    """Everything besides the images that shapes a prompt."""
    vehicle: VehicleInfo | None = None
    reference_year: int | None = None
    image_count: int = 0
    damage: AnalysisResult | None = None
    valuation: ValuationResult | None = None
    paint: PaintResult | None = None


SYSTEM_PROMPTS: dict[AnalysisKind, str] = {
    AnalysisKind.DAMAGE: (
        "You are an experienced automotive damage assessor. "
        "Produce your answer as a single valid JSON object."
    ),
    AnalysisKind.VALUATION: (
        "You are an experienced used-vehicle valuation expert. "
        "Produce your answer as a single valid JSON object."
    ),
    AnalysisKind.COMPREHENSIVE: (
        "You are a senior vehicle inspection expert who merges partial analyses "
        "into one report. Produce your answer as a single valid JSON object."
    ),
    AnalysisKind.PAINT: (
        "You are an experienced automotive paint and finish specialist. "
        "Produce your answer as a single valid JSON object."
    ),
}

OUTPUT_CONTRACT = (
    "Respond in English with exactly one JSON object. "
    "Do not add any text before or after it and do not wrap it in code fences."
)

COMMON_RULES = (
    "Return only the JSON object, nothing else.",
    "Never omit a field; use an empty array when a list has no entries.",
    "Use JSON numbers for every numeric field, never strings.",
    "Use only the listed values for enumerated fields.",
    "Percentages and scores are integers between 0 and 100.",
    "Costs and prices are non-negative integers in the local currency.",
)


# --- Worked Examples ---

DAMAGE_EXAMPLE = {
    "damageAreas": [
        {
            "id": "damage-1",
            "x": 150,
            "y": 200,
            "width": 120,
            "height": 80,
            "type": "dent",
            "severity": "high",
            "confidence": 95,
            "description": "Deep dent on the front right fender with bent metal. "
                           "The fender must be replaced and repainted.",
            "area": "front",
            "repairCost": 18000,
            "partsAffected": ["Front right fender", "Front right door edge"],
            "repairPriority": "urgent",
            "safetyImpact": "medium",
            "repairMethod": "Fender replacement, professional paint, door edge straightening",
            "estimatedRepairTime": 8,
            "warrantyImpact": True,
            "insuranceCoverage": "full",
        },
        {
            "id": "damage-2",
            "x": 70,
            "y": 120,
            "width": 100,
            "height": 80,
            "type": "break",
            "severity": "high",
            "confidence": 90,
            "description": "Front right headlamp is shattered. "
                           "Night driving is unsafe until the unit is replaced.",
            "area": "front",
            "repairCost": 12000,
            "partsAffected": ["Front right headlamp"],
            "repairPriority": "urgent",
            "safetyImpact": "high",
            "repairMethod": "Headlamp unit replacement and wiring check",
            "estimatedRepairTime": 4,
            "warrantyImpact": True,
            "insuranceCoverage": "full",
        },
    ],
    "overallAssessment": {
        "damageLevel": "poor",
        "totalRepairCost": 30000,
        "insuranceStatus": "repairable",
        "marketValueImpact": 15,
        "detailedAnalysis": "Moderate to heavy damage on the front right side. "
                            "Structural integrity should be verified.",
        "vehicleCondition": "damaged",
        "resaleValue": 80,
        "depreciation": 20,
    },
    "technicalAnalysis": {
        "structuralIntegrity": "moderate_damage",
        "safetySystems": "needs_inspection",
        "mechanicalSystems": "operational",
        "electricalSystems": "minor_issues",
        "bodyAlignment": "minor_deviation",
        "frameDamage": False,
        "airbagDeployment": False,
        "seatbeltFunction": "functional",
    },
    "safetyAssessment": {
        "roadworthiness": "conditional",
        "criticalIssues": ["Broken headlamp makes night driving unsafe"],
        "safetyRecommendations": ["Have the chassis measured before long trips"],
        "inspectionRequired": True,
        "immediateActions": ["Replace the front right headlamp"],
        "longTermConcerns": ["Corrosion may start at the damaged fender"],
    },
    "repairEstimate": {
        "totalCost": 30000,
        "laborCost": 9000,
        "partsCost": 17000,
        "paintCost": 4000,
        "additionalCosts": 0,
        "breakdown": [
            {"part": "Front right fender", "description": "Replacement and paint", "cost": 18000},
            {"part": "Front right headlamp", "description": "Unit replacement", "cost": 12000},
        ],
        "timeline": [
            {"phase": "Parts sourcing", "duration": 3, "description": "Order original parts"},
            {"phase": "Repair and paint", "duration": 3, "description": "Fit parts and paint"},
            {"phase": "Quality control", "duration": 1, "description": "Final check and test drive"},
        ],
        "warranty": {
            "covered": True,
            "duration": "12 months",
            "conditions": ["Repair at an authorised service", "Original parts only"],
        },
    },
    "confidence": 88,
}

VALUATION_EXAMPLE = {
    "estimatedValue": {
        "recommendedValue": 1150000,
        "minValue": 1120000,
        "maxValue": 1200000,
        "quickSaleValue": 1080000,
        "currency": "TRY",
    },
    "marketAnalysis": {
        "averagePrice": 1170000,
        "priceRange": {"min": 1100000, "max": 1250000},
        "trend": "rising",
        "demand": "high",
        "supply": "low",
        "timeToSell": "7-15 days",
    },
    "condition": {
        "overallScore": 88,
        "paintScore": 85,
        "bodyScore": 90,
        "mechanicalScore": 95,
        "description": "Low mileage, very good condition",
    },
    "priceBreakdown": {
        "modelYearAdjustment": -36000,
        "mileageAdjustment": -5000,
        "paintAdjustment": -9000,
        "bodyAdjustment": 0,
        "damageAdjustment": 0,
        "marketAdjustment": 0,
        "basePrice": 1200000,
        "finalValue": 1150000,
    },
    "marketPosition": {
        "percentile": 60,
        "segment": "at_market",
        "competitiveness": "Competitive against similar listings",
    },
    "investmentAnalysis": {
        "annualDepreciationRate": 8,
        "valueInOneYear": 1058000,
        "outlook": "neutral",
        "summary": "Holds value well for its segment",
    },
    "recommendations": {
        "askingPrice": 1150000,
        "minimumPrice": 1100000,
        "negotiationMargin": "3-5%",
        "maxPurchasePrice": 1150000,
        "targetPurchasePrice": 1100000,
        "improvements": [
            {"action": "Polish and wax", "cost": 3000, "valueIncrease": 15000},
        ],
    },
    "comparableVehicles": [
        {"description": "Same model, similar trim", "year": 2024, "price": 1180000, "mileage": 12000},
    ],
    "notes": ["Paint and body condition assessed from the photos"],
    "confidence": 85,
}

COMPREHENSIVE_EXAMPLE = {
    "overallScore": 72,
    "expertiseGrade": "good",
    "comprehensiveSummary": {
        "vehicleOverview": "Well kept vehicle with localised front damage.",
        "keyFindings": ["Front right fender damage", "Engine and gearbox in good order"],
        "criticalIssues": ["Broken headlamp"],
        "strengths": ["Low mileage", "Clean interior"],
        "weaknesses": ["Pending bodywork"],
        "overallCondition": "Good once repaired",
        "marketPosition": "At market",
        "investmentPotential": "Fair",
    },
    "expertOpinion": {
        "recommendation": "buy",
        "reasoning": ["Repair costs are moderate relative to value"],
        "riskAssessment": {"level": "medium", "factors": ["Possible hidden structural damage"]},
        "opportunityAssessment": {"level": "good", "factors": ["Priced below market"]},
        "expertNotes": ["Ask for a chassis measurement report"],
    },
    "finalRecommendations": {
        "immediate": [
            {"priority": "high", "action": "Replace headlamp", "cost": 12000, "benefit": "Safe night driving"},
        ],
        "shortTerm": [
            {"priority": "medium", "action": "Repair fender", "cost": 18000, "benefit": "Restores value"},
        ],
        "longTerm": [],
        "maintenance": [
            {"frequency": "Every 15000 km", "action": "Oil and filter service", "cost": 4000},
        ],
    },
    "investmentDecision": {
        "financialSummary": {
            "purchasePrice": 1150000,
            "immediateRepairs": 30000,
            "monthlyMaintenance": 1500,
            "estimatedResaleValue": 1200000,
            "totalInvestment": 1180000,
            "expectedProfit": 20000,
            "roi": 2,
        },
        "decision": "fair_investment",
        "expectedReturn": 2,
        "paybackPeriod": "12 months",
        "riskLevel": "medium",
        "liquidityScore": 70,
        "marketTiming": "Neutral",
    },
    "confidence": 80,
}


PAINT_EXAMPLE = {
    "paintQuality": {
        "overallScore": 78,
        "gloss": 80,
        "smoothness": 75,
        "uniformity": 72,
        "adhesion": 90,
        "uvProtection": 70,
    },
    "paintCondition": "good",
    "colorAnalysis": {
        "colorCode": "1G3",
        "colorName": "Silver metallic",
        "metallic": True,
        "pearl": False,
        "colorMatch": 84,
        "fading": 10,
        "originalColor": False,
        "repaintDetected": True,
    },
    "surfaceAnalysis": {
        "primerThickness": 30,
        "baseCoatThickness": 55,
        "clearCoatThickness": 60,
        "totalThickness": 145,
        "thicknessUniformity": 70,
        "orangePeel": 20,
        "contamination": 5,
    },
    "defects": [
        {
            "id": "paint-defect-1",
            "type": "color_mismatch",
            "severity": "medium",
            "location": "Front right fender",
            "size": 1200,
            "description": "The fender is a shade lighter than the door next to it. "
                           "It has most likely been repainted.",
            "repairable": True,
            "repairCost": 6000,
        },
        {
            "id": "paint-defect-2",
            "type": "orange_peel",
            "severity": "low",
            "location": "Hood",
            "size": 300,
            "description": "Light orange peel texture on the hood clear coat.",
            "repairable": True,
            "repairCost": 2000,
        },
    ],
    "defectScore": 25,
    "technicalDetails": {
        "paintSystem": "3-layer system",
        "qualityClass": "aftermarket",
        "layerCount": 3,
        "paintAgeYears": 2,
    },
    "recommendations": {
        "urgent": [],
        "shortTerm": ["Blend the front right fender into the door"],
        "longTerm": ["Ceramic coating after the respray"],
        "maintenance": ["Hand wash every two weeks"],
        "protection": ["Park in the shade when possible"],
    },
    "costEstimate": {
        "totalCost": 8000,
        "laborCost": 3200,
        "materialCost": 4800,
        "durationHours": 6,
    },
    "confidence": 82,
}


# --- Shared Sections ---

def _value_or_unknown(value) -> str:
    return "Unknown" if value is None else str(value)


def vehicle_section(vehicle: VehicleInfo | None, reference_year: int | None = None) -> str:
    if vehicle is None:
        return ""

    lines = [
        "VEHICLE:",
        f"- Make: {_value_or_unknown(vehicle.make)}",
        f"- Model: {_value_or_unknown(vehicle.model)}",
        f"- Year: {_value_or_unknown(vehicle.year)}",
        f"- Plate: {_value_or_unknown(vehicle.plate)}",
    ]
    if vehicle.mileage is not None:
        lines.append(f"- Mileage: {vehicle.mileage} km")

    if reference_year is not None and vehicle.year is not None:
        age = max(0, reference_year - vehicle.year)
        lines.append(f"- Age: {age} years (as of {reference_year})")
        if vehicle.mileage is None:
            lines.append(f"- Estimated mileage: {age * KM_PER_YEAR} km")

    return "\n".join(lines)


def damage_section(damage: AnalysisResult) -> str:
    overall = damage.overall_assessment
    lines = [
        "PRIOR DAMAGE ASSESSMENT:",
        f"- Damage count: {len(damage.damage_areas)}",
        f"- Total repair cost: {overall.total_repair_cost}",
        f"- Damage level: {overall.damage_level.value}",
        f"- Vehicle condition: {overall.vehicle_condition.value}",
    ]
    for area in damage.damage_areas:
        lines.append(
            f"  - {area.category.value} ({area.severity.value}) at {area.region.value}: "
            f"{area.description} [cost {area.repair_cost}]"
        )
    return "\n".join(lines)


def valuation_section(valuation: ValuationResult) -> str:
    value = valuation.estimated_value
    return "\n".join([
        "PRIOR VALUATION:",
        f"- Recommended value: {value.recommended_value} {value.currency}",
        f"- Range: {value.min_value}-{value.max_value} {value.currency}",
        f"- Condition score: {valuation.condition.overall_score}",
        f"- Market trend: {valuation.market_analysis.trend.value}",
    ])


def paint_section(paint: PaintResult) -> str:
    return "\n".join([
        "PRIOR PAINT ANALYSIS:",
        f"- Paint condition: {paint.paint_condition.value}",
        f"- Quality score: {paint.paint_quality.overall_score}",
        f"- Defect count: {len(paint.defects)}",
        f"- Repaint detected: {'yes' if paint.color_analysis.repaint_detected else 'no'}",
        f"- Paint repair cost: {paint.cost_estimate.total_cost}",
    ])


def schema_section(spec: RecordSpec) -> str:
    return "OUTPUT SCHEMA (every field is required):\n" + "\n".join(spec.schema_lines())


def example_section(example: dict) -> str:
    return "EXAMPLE RESPONSE:\n" + json.dumps(example, indent=2, ensure_ascii=False)


def rules_section(extra_rules: tuple[str, ...] = ()) -> str:
    rules = COMMON_RULES + extra_rules
    return "CRITICAL RULES:\n" + "\n".join(f"- {rule}" for rule in rules)


def _join(*sections: str) -> str:
    return "\n\n".join(section for section in sections if section)


# --- Public API ---

def build_damage_prompt(context: PromptContext) -> str:
    task = (
        "TASK: Analyse the vehicle photo in detail and report every visible damage "
        "separately, with location, type, severity, affected parts, repair method "
        "and a realistic repair cost."
    )
    vehicle = vehicle_section(context.vehicle, context.reference_year)
    if vehicle:
        vehicle += "\nTake this vehicle information into account."

    return _join(
        OUTPUT_CONTRACT,
        task,
        vehicle,
        schema_section(DAMAGE_RESULT_SPEC),
        example_section(DAMAGE_EXAMPLE),
        rules_section((
            "If the photo shows no damage, return an empty damageAreas array.",
            "Report each damage separately; do not merge them.",
            "Always give pixel coordinates (x, y, width, height) for each damage.",
            "Write at least two sentences per damage description.",
        )),
    )


def build_paint_prompt(context: PromptContext) -> str:
    task = (
        "TASK: Analyse the paint and finish of the vehicle in the photo(s). Judge gloss, "
        "colour match between panels, signs of repainting and finish defects such as "
        "orange peel, runs, fading or peeling, and estimate the refinishing cost."
    )
    vehicle = vehicle_section(context.vehicle, context.reference_year)
    if vehicle:
        vehicle += "\nTake this vehicle information into account."

    return _join(
        OUTPUT_CONTRACT,
        task,
        vehicle,
        schema_section(PAINT_RESULT_SPEC),
        example_section(PAINT_EXAMPLE),
        rules_section((
            "Report finish defects only; dents and broken parts belong to the damage assessment.",
            "If the finish shows no defects, return an empty defects array.",
            "Layer thicknesses are integers in microns.",
        )),
    )


def build_valuation_prompt(context: PromptContext) -> str:
    task = "TASK: Determine the current market value of this vehicle."
    if context.image_count:
        task += (
            f" Inspect the {context.image_count} attached photo(s) for paint, body, tyre, "
            "glass and interior condition and reflect every defect in the price."
        )

    if context.damage is not None:
        damage = damage_section(context.damage) + (
            "\nDeduct the repair cost of these damages in priceBreakdown.damageAdjustment."
        )
    else:
        damage = (
            "PRIOR DAMAGE ASSESSMENT: none available. "
            "Do not deduct for damage you cannot see; set damageAdjustment to 0."
        )

    return _join(
        OUTPUT_CONTRACT,
        task,
        vehicle_section(context.vehicle, context.reference_year),
        damage,
        schema_section(VALUATION_RESULT_SPEC),
        example_section(VALUATION_EXAMPLE),
        rules_section((
            "priceBreakdown.finalValue must equal basePrice plus every adjustment.",
            "estimatedValue.minValue <= recommendedValue <= maxValue.",
        )),
    )


def build_comprehensive_prompt(context: PromptContext) -> str:
    task = (
        "TASK: Merge every available analysis below into one comprehensive "
        "inspection report with an overall score, an expert opinion, prioritised "
        "recommendations and an investment decision."
    )

    missing = []
    if context.damage is None:
        missing.append("damage assessment")
    if context.valuation is None:
        missing.append("valuation")
    if context.paint is None:
        missing.append("paint analysis")
    availability = (
        "UNAVAILABLE ANALYSES: " + ", ".join(missing) + ". Do not invent their results."
        if missing else ""
    )

    return _join(
        OUTPUT_CONTRACT,
        task,
        vehicle_section(context.vehicle, context.reference_year),
        damage_section(context.damage) if context.damage is not None else "",
        valuation_section(context.valuation) if context.valuation is not None else "",
        paint_section(context.paint) if context.paint is not None else "",
        availability,
        schema_section(COMPREHENSIVE_RESULT_SPEC),
        example_section(COMPREHENSIVE_EXAMPLE),
        rules_section((
            "overallScore reflects every available analysis.",
            "Base financial figures on the prior valuation when it is available.",
        )),
    )


PROMPT_BUILDERS = {
    AnalysisKind.DAMAGE: build_damage_prompt,
    AnalysisKind.VALUATION: build_valuation_prompt,
    AnalysisKind.COMPREHENSIVE: build_comprehensive_prompt,
    AnalysisKind.PAINT: build_paint_prompt,
}


def build_prompt(kind: AnalysisKind | str, context: PromptContext) -> str:
    """Dispatches to the builder for kind. Pure: same input, same bytes."""
    return PROMPT_BUILDERS[AnalysisKind(kind)](context)
