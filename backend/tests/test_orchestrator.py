"""
Unit tests for orchestrator module

Uses a call-counting fake invoker; no network access.
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_image_bytes
from vehicle_analysis.cache import ResultCache
from vehicle_analysis.orchestrator import (
    AnalysisOrchestrator,
    AnalysisRequest,
    AnalysisStage,
    StageState,
    default_stages,
)
from vehicle_analysis.prompts import (
    SYSTEM_PROMPTS,
    DAMAGE_EXAMPLE,
    VALUATION_EXAMPLE,
    COMPREHENSIVE_EXAMPLE,
    PAINT_EXAMPLE,
)
from vehicle_analysis.sanitizer import NO_DAMAGE_CONTEXT_NOTE
from vehicle_analysis.config import MAX_AMOUNT
from vehicle_analysis.models import (
    AnalysisKind,
    AnalysisResult,
    ValuationResult,
    ComprehensiveResult,
    PaintResult,
    AnalysisFailedError,
    TransportError,
    QuotaError,
    UnsupportedModelError,
    InvalidImageError,
    VehicleInfo,
)


NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)

DAMAGE_REPLY = "Here is the assessment:\n" + json.dumps(DAMAGE_EXAMPLE)
VALUATION_REPLY = json.dumps(VALUATION_EXAMPLE)
COMPREHENSIVE_REPLY = "```json\n" + json.dumps(COMPREHENSIVE_EXAMPLE) + "\n```"
PAINT_REPLY = json.dumps(PAINT_EXAMPLE)


class FakeInvoker:
    """
    Replies per analysis kind. A list of replies is consumed in order and its
    last entry repeats; Exception entries are raised.
    """
    provider = "fake"

    def __init__(self, **replies):
        self.replies = {AnalysisKind(kind): value if isinstance(value, list) else [value]
                        for kind, value in replies.items()}
        self.requests = []

    def invoke(self, request):
        kind = next(k for k, prompt in SYSTEM_PROMPTS.items() if prompt == request.system_prompt)
        self.requests.append((kind, request))
        queue = self.replies[kind]
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def calls(self, kind=None):
        return len([k for k, _ in self.requests if kind is None or k == kind])


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def image():
    return make_image_bytes()


@pytest.fixture
def happy_invoker():
    return FakeInvoker(
        damage=DAMAGE_REPLY,
        valuation=VALUATION_REPLY,
        comprehensive=COMPREHENSIVE_REPLY,
        paint=PAINT_REPLY,
    )


def make_orchestrator(invoker, **kwargs):
    return AnalysisOrchestrator(invoker=invoker, cache=ResultCache(), clock=lambda: NOW, **kwargs)


# ============================================================================
# SINGLE ANALYSIS TESTS
# ============================================================================

class TestSingleAnalysis:

    def test_analyze_damage(self, happy_invoker, image):
        result = make_orchestrator(happy_invoker).analyze_damage([image])

        assert isinstance(result, AnalysisResult)
        assert len(result.damage_areas) == 2
        assert result.provider == "fake"
        assert result.analysis_timestamp == NOW.isoformat()
        assert happy_invoker.calls() == 1

    def test_request_carries_stage_settings(self, happy_invoker, image):
        make_orchestrator(happy_invoker).analyze_damage([image])

        _, request = happy_invoker.requests[0]
        stage = default_stages()[AnalysisKind.DAMAGE]
        assert request.model == stage.model
        assert request.temperature == stage.temperature
        assert len(request.attachments) == 1
        assert request.attachments[0].mime_type == "image/jpeg"

    def test_images_capped(self, happy_invoker):
        images = [make_image_bytes(color=(i, i, i)) for i in range(6)]
        make_orchestrator(happy_invoker).analyze_damage(images)

        _, request = happy_invoker.requests[0]
        assert len(request.attachments) == 4

    def test_terminal_failure_raises(self, image):
        invoker = FakeInvoker(damage=TransportError("connection reset"))
        with pytest.raises(AnalysisFailedError) as exc_info:
            make_orchestrator(invoker).analyze_damage([image])

        error = exc_info.value
        assert error.kind == "damage"
        assert error.failure_kind == "TRANSPORT_ERROR"
        assert "connection reset" in error.cause
        assert error.to_dict()["error_kind"] == "TRANSPORT_ERROR"

    def test_invalid_image(self):
        invoker = FakeInvoker(damage=DAMAGE_REPLY)
        run = make_orchestrator(invoker).run(AnalysisRequest(images=(b"garbage",)), ["damage"])

        assert run[AnalysisKind.DAMAGE].state == StageState.FAILED
        assert isinstance(run[AnalysisKind.DAMAGE].failure, InvalidImageError)
        assert invoker.calls() == 0

    def test_analyze_paint(self, happy_invoker, image):
        result = make_orchestrator(happy_invoker).analyze_paint([image])

        assert isinstance(result, PaintResult)
        assert len(result.defects) == 2
        assert result.color_analysis.repaint_detected is True
        assert happy_invoker.calls(AnalysisKind.PAINT) == 1

    def test_paint_requires_images(self, happy_invoker, vehicle):
        run = make_orchestrator(happy_invoker).run(AnalysisRequest(vehicle=vehicle), ["paint"])

        assert run[AnalysisKind.PAINT].state == StageState.FAILED
        assert isinstance(run[AnalysisKind.PAINT].failure, InvalidImageError)
        assert happy_invoker.calls() == 0

    def test_huge_amounts_in_reply(self, image):
        reply = json.dumps({"damageAreas": [{"repairCost": 1e308}, {"repairCost": 1e308}]})
        orchestrator = make_orchestrator(FakeInvoker(damage=reply))
        run = orchestrator.run(AnalysisRequest(images=(image,)), ["damage"])

        outcome = run[AnalysisKind.DAMAGE]
        assert outcome.state == StageState.DONE
        assert outcome.result.overall_assessment.total_repair_cost == MAX_AMOUNT


# ============================================================================
# CACHE TESTS
# ============================================================================

class TestCaching:

    def test_identical_input_served_from_cache(self, happy_invoker, image):
        orchestrator = make_orchestrator(happy_invoker)
        first = orchestrator.analyze_damage([image])
        second = orchestrator.analyze_damage([bytes(image)])

        assert second is first
        assert happy_invoker.calls() == 1

    def test_from_cache_flag(self, happy_invoker, image):
        orchestrator = make_orchestrator(happy_invoker)
        request = AnalysisRequest(images=(image,))
        assert orchestrator.run(request, ["damage"])[AnalysisKind.DAMAGE].from_cache is False
        assert orchestrator.run(request, ["damage"])[AnalysisKind.DAMAGE].from_cache is True

    def test_vehicle_changes_key(self, happy_invoker, image):
        orchestrator = make_orchestrator(happy_invoker)
        orchestrator.analyze_damage([image])
        orchestrator.analyze_damage([image], vehicle=VehicleInfo(make="Fiat"))
        assert happy_invoker.calls() == 2

    def test_different_image_changes_key(self, happy_invoker, image):
        orchestrator = make_orchestrator(happy_invoker)
        orchestrator.analyze_damage([image])
        orchestrator.analyze_damage([make_image_bytes(color=(1, 2, 3))])
        assert happy_invoker.calls() == 2

    def test_metadata_only_valuation_keyed_by_vehicle(self):
        invoker = FakeInvoker(valuation=VALUATION_REPLY)
        orchestrator = make_orchestrator(invoker)

        orchestrator.estimate_value(VehicleInfo(make="Fiat", year=2019))
        orchestrator.estimate_value(VehicleInfo(make="Fiat", year=2019))
        orchestrator.estimate_value(VehicleInfo(make="Fiat", year=2020))

        assert invoker.calls(AnalysisKind.VALUATION) == 2

    def test_reference_year_changes_key(self):
        invoker = FakeInvoker(valuation=VALUATION_REPLY)
        orchestrator = make_orchestrator(invoker)
        vehicle = VehicleInfo(make="Fiat", model="Egea", year=2015)

        orchestrator.estimate_value(vehicle, reference_year=2020)
        orchestrator.estimate_value(vehicle, reference_year=2030)
        orchestrator.estimate_value(vehicle, reference_year=2030)

        assert invoker.calls(AnalysisKind.VALUATION) == 2
        prompts = [request.prompt for _, request in invoker.requests]
        assert "- Age: 5 years (as of 2020)" in prompts[0]
        assert "- Age: 15 years (as of 2030)" in prompts[1]

    def test_failures_not_cached(self, image):
        invoker = FakeInvoker(damage=[UnsupportedModelError("no such model"), DAMAGE_REPLY])
        orchestrator = make_orchestrator(invoker)

        with pytest.raises(AnalysisFailedError):
            orchestrator.analyze_damage([image])
        assert isinstance(orchestrator.analyze_damage([image]), AnalysisResult)
        assert invoker.calls() == 2

    def test_degraded_result_does_not_shadow_full_result(self, image, vehicle):
        invoker = FakeInvoker(
            damage=[UnsupportedModelError("no such model"), DAMAGE_REPLY],
            valuation=VALUATION_REPLY,
        )
        orchestrator = make_orchestrator(invoker)

        degraded = orchestrator.estimate_value(vehicle, [image])
        full = orchestrator.estimate_value(vehicle, [image])

        assert degraded.damage_context_available is False
        assert full.damage_context_available is True
        assert invoker.calls(AnalysisKind.VALUATION) == 2


# ============================================================================
# RETRY TESTS
# ============================================================================

class TestRetries:

    def test_retryable_error_retried(self, image):
        invoker = FakeInvoker(damage=[QuotaError("slow down"), DAMAGE_REPLY])
        run = make_orchestrator(invoker).run(AnalysisRequest(images=(image,)), ["damage"])

        outcome = run[AnalysisKind.DAMAGE]
        assert outcome.state == StageState.DONE
        assert outcome.attempts == 2

    def test_unparseable_reply_retried(self, image):
        invoker = FakeInvoker(damage=["I cannot help with that.", DAMAGE_REPLY])
        result = make_orchestrator(invoker).analyze_damage([image])
        assert len(result.damage_areas) == 2
        assert invoker.calls() == 2

    def test_budget_exhausted(self, image):
        invoker = FakeInvoker(damage=TransportError("timeout"))
        run = make_orchestrator(invoker).run(AnalysisRequest(images=(image,)), ["damage"])

        outcome = run[AnalysisKind.DAMAGE]
        assert outcome.state == StageState.FAILED
        assert isinstance(outcome.failure, TransportError)
        assert invoker.calls() == 1 + default_stages()[AnalysisKind.DAMAGE].retry_budget

    def test_unsupported_model_not_retried(self, image):
        invoker = FakeInvoker(damage=UnsupportedModelError("model not found"))
        run = make_orchestrator(invoker).run(AnalysisRequest(images=(image,)), ["damage"])

        assert run[AnalysisKind.DAMAGE].state == StageState.FAILED
        assert invoker.calls() == 1

    def test_custom_budget(self, image):
        stages = default_stages()
        stages[AnalysisKind.DAMAGE] = AnalysisStage(
            kind=AnalysisKind.DAMAGE, model="m", temperature=0.0, retry_budget=3, needs_images=True,
        )
        invoker = FakeInvoker(damage=TransportError("timeout"))
        make_orchestrator(invoker, stages=stages).run(AnalysisRequest(images=(image,)), ["damage"])
        assert invoker.calls() == 4

    def test_deadline_passed(self, happy_invoker, image):
        request = AnalysisRequest(images=(image,), deadline=NOW - timedelta(seconds=1))
        run = make_orchestrator(happy_invoker).run(request, ["damage"])

        outcome = run[AnalysisKind.DAMAGE]
        assert outcome.state == StageState.FAILED
        assert isinstance(outcome.failure, TransportError)
        assert happy_invoker.calls() == 0

    def test_deadline_caps_timeout(self, happy_invoker, image):
        request = AnalysisRequest(images=(image,), deadline=NOW + timedelta(seconds=5))
        make_orchestrator(happy_invoker, timeout=120).run(request, ["damage"])

        _, sent = happy_invoker.requests[0]
        assert sent.timeout == 5


# ============================================================================
# CHAINED ANALYSIS TESTS
# ============================================================================

class TestChaining:

    def test_full_chain(self, happy_invoker, image, vehicle):
        request = AnalysisRequest(images=(image,), vehicle=vehicle, reference_year=2026)
        run = make_orchestrator(happy_invoker).run(request, ["comprehensive"])

        assert run.succeeded
        assert [k for k, _ in happy_invoker.requests] == [
            AnalysisKind.DAMAGE, AnalysisKind.PAINT, AnalysisKind.VALUATION, AnalysisKind.COMPREHENSIVE,
        ]
        report = run.result(AnalysisKind.COMPREHENSIVE)
        assert isinstance(report, ComprehensiveResult)
        assert report.damage_analysis is run.result(AnalysisKind.DAMAGE)
        assert report.valuation is run.result(AnalysisKind.VALUATION)
        assert report.paint_analysis is run.result(AnalysisKind.PAINT)
        assert "PRIOR PAINT ANALYSIS:" in happy_invoker.requests[-1][1].prompt

    def test_valuation_prompt_gets_damage_context(self, happy_invoker, image, vehicle):
        make_orchestrator(happy_invoker).estimate_value(vehicle, [image])

        valuation_prompt = happy_invoker.requests[1][1].prompt
        assert "- Damage count: 2" in valuation_prompt

    def test_failed_prerequisite_degrades_dependent(self, image, vehicle):
        invoker = FakeInvoker(damage=UnsupportedModelError("model not found"), valuation=VALUATION_REPLY)
        run = make_orchestrator(invoker).run(AnalysisRequest(images=(image,), vehicle=vehicle), ["valuation"])

        assert run[AnalysisKind.DAMAGE].state == StageState.FAILED
        outcome = run[AnalysisKind.VALUATION]
        assert outcome.state == StageState.DONE
        assert AnalysisKind.DAMAGE in outcome.degraded
        assert outcome.degraded[AnalysisKind.DAMAGE].error_kind == "PREREQUISITE_FAILED"

        valuation = outcome.result
        assert isinstance(valuation, ValuationResult)
        assert NO_DAMAGE_CONTEXT_NOTE in valuation.notes
        assert "none available" in invoker.requests[-1][1].prompt
        assert not run.succeeded

    def test_valuation_without_images(self, vehicle):
        invoker = FakeInvoker(valuation=VALUATION_REPLY)
        result = make_orchestrator(invoker).estimate_value(vehicle)

        assert isinstance(result, ValuationResult)
        assert result.damage_context_available is False
        assert invoker.calls(AnalysisKind.DAMAGE) == 0
        assert invoker.calls(AnalysisKind.VALUATION) == 1

    def test_comprehensive_survives_all_prerequisites_failing(self, image):
        invoker = FakeInvoker(
            damage=UnsupportedModelError("gone"),
            valuation=UnsupportedModelError("gone"),
            paint=UnsupportedModelError("gone"),
            comprehensive=COMPREHENSIVE_REPLY,
        )
        report = make_orchestrator(invoker).comprehensive_report([image])

        assert report.damage_analysis is None
        assert report.valuation is None
        assert report.paint_analysis is None
        expected = "UNAVAILABLE ANALYSES: damage assessment, valuation, paint analysis"
        assert expected in invoker.requests[-1][1].prompt

    def test_failed_paint_degrades_comprehensive(self, image):
        invoker = FakeInvoker(
            damage=DAMAGE_REPLY,
            valuation=VALUATION_REPLY,
            paint=UnsupportedModelError("gone"),
            comprehensive=COMPREHENSIVE_REPLY,
        )
        run = make_orchestrator(invoker).run(AnalysisRequest(images=(image,)), ["comprehensive"])

        outcome = run[AnalysisKind.COMPREHENSIVE]
        assert outcome.state == StageState.DONE
        assert list(outcome.degraded) == [AnalysisKind.PAINT]
        assert outcome.result.paint_analysis is None
        assert outcome.result.damage_analysis is run.result(AnalysisKind.DAMAGE)
        assert "UNAVAILABLE ANALYSES: paint analysis." in invoker.requests[-1][1].prompt

    def test_unreadable_photo_fails_only_image_stages(self, vehicle):
        invoker = FakeInvoker(valuation=VALUATION_REPLY)
        request = AnalysisRequest(images=(b"garbage",), vehicle=vehicle)
        run = make_orchestrator(invoker).run(request, ["valuation"])

        assert run[AnalysisKind.DAMAGE].state == StageState.FAILED
        assert isinstance(run[AnalysisKind.DAMAGE].failure, InvalidImageError)
        outcome = run[AnalysisKind.VALUATION]
        assert outcome.state == StageState.DONE
        assert isinstance(outcome.image_error, InvalidImageError)
        assert invoker.requests[0][1].attachments == ()
        assert invoker.calls(AnalysisKind.DAMAGE) == 0

    def test_prerequisites_not_duplicated(self, happy_invoker, image):
        request = AnalysisRequest(images=(image,))
        make_orchestrator(happy_invoker).run(request, ["comprehensive", "valuation", "damage"])
        assert happy_invoker.calls() == 4
