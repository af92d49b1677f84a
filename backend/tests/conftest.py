# In backend/ folder

import io
import sys
from pathlib import Path

import pytest
from PIL import Image

# Add backend/ directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from vehicle_analysis.models import Provenance, VehicleInfo  # noqa: E402
from vehicle_analysis.prompts import DAMAGE_EXAMPLE, VALUATION_EXAMPLE, PAINT_EXAMPLE  # noqa: E402
from vehicle_analysis.sanitizer import sanitize_damage, sanitize_valuation, sanitize_paint  # noqa: E402


def make_image_bytes(size=(640, 480), fmt="PNG", color=(120, 40, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def provenance():
    return Provenance(provider="OpenAI", model="gpt-4o", timestamp="2026-01-01T00:00:00+00:00")


@pytest.fixture
def vehicle():
    return VehicleInfo(make="Toyota", model="Corolla", year=2020, plate="34 ABC 123", mileage=45000)


@pytest.fixture
def damage_result(provenance):
    return sanitize_damage(DAMAGE_EXAMPLE, provenance)


@pytest.fixture
def valuation_result(provenance, damage_result):
    return sanitize_valuation(VALUATION_EXAMPLE, provenance, damage=damage_result)


@pytest.fixture
def paint_result(provenance):
    return sanitize_paint(PAINT_EXAMPLE, provenance)


@pytest.fixture
def png_bytes():
    return make_image_bytes()
