"""
Configuration for the vehicle analysis pipeline.

All model choices, budgets, limits, and heuristic constants in one place.
Change here, not in business logic modules.
"""

import os

# --- Inference Service ---

OPENAI_API_KEY: str = os.environ.get("OPENAI_API_KEY", "")
OPENAI_BASE_URL: str | None = os.environ.get("OPENAI_BASE_URL") or None
PROVIDER_NAME: str = "OpenAI"

REQUEST_TIMEOUT_SECONDS: float = float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "120"))
MAX_OUTPUT_TOKENS: int = int(os.environ.get("MAX_OUTPUT_TOKENS", "2500"))

DAMAGE_MODEL: str = os.environ.get("OPENAI_DAMAGE_MODEL", "gpt-4o-mini")
VALUATION_MODEL: str = os.environ.get("OPENAI_VALUE_MODEL", "gpt-4o")
COMPREHENSIVE_MODEL: str = os.environ.get("OPENAI_COMPREHENSIVE_MODEL", "gpt-4o")
PAINT_MODEL: str = os.environ.get("OPENAI_PAINT_MODEL", "gpt-4o")

TEMPERATURES: dict[str, float] = {
    "damage": 0.1,
    "valuation": 0.3,
    "comprehensive": 0.3,
    "paint": 0.1,
}

# Retries after the first attempt, per analysis kind
RETRY_BUDGETS: dict[str, int] = {
    "damage": int(os.environ.get("DAMAGE_RETRY_BUDGET", "1")),
    "valuation": int(os.environ.get("VALUATION_RETRY_BUDGET", "1")),
    "comprehensive": int(os.environ.get("COMPREHENSIVE_RETRY_BUDGET", "1")),
    "paint": int(os.environ.get("PAINT_RETRY_BUDGET", "1")),
}

# --- Cache ---

# 0 disables eviction
CACHE_MAX_ENTRIES: int = int(os.environ.get("CACHE_MAX_ENTRIES", "512"))

# --- Image Intake ---

MAX_IMAGE_BYTES: int = 10 * 1024 * 1024
ALLOWED_IMAGE_FORMATS: set[str] = {"JPEG", "PNG", "WEBP"}
ANALYSIS_MAX_PX: int = int(os.environ.get("ANALYSIS_MAX_PX", "1024"))
ANALYSIS_JPEG_QUALITY: int = 90
MAX_IMAGES_PER_REQUEST: int = 4

# --- Default-Filling Heuristics ---
# Placeholder business rules, applied only when the model omits a figure.

MARKET_IMPACT_COST_DIVISOR: float = 200.0
RESALE_COST_DIVISOR: float = 150.0
DEPRECIATION_COST_DIVISOR: float = 180.0

LABOR_SHARE: float = 0.4
PARTS_SHARE: float = 0.5
PAINT_SHARE: float = 0.1

# Repair days assumed per unit of cost when building a default timeline
COST_PER_REPAIR_DAY: float = 1500.0

# Ceiling for any monetary or numeric figure read from a model reply
MAX_AMOUNT: int = 10 ** 12

KM_PER_YEAR: int = 15000
DEFAULT_CURRENCY: str = "TRY"

# Typical factory paint layer thicknesses, in microns
PRIMER_MICRONS: int = 25
BASE_COAT_MICRONS: int = 40
CLEAR_COAT_MICRONS: int = 50
PAINT_HOURS_PER_DEFECT: int = 2

# --- Storage ---

DYNAMODB_TABLE: str = os.environ.get("DYNAMODB_TABLE", "analysis_results")
