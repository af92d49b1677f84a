"""
Analysis orchestration - runs analysis kinds as a small DAG over one input set.

    damage ──► valuation ──┐
       └─────────────────► comprehensive
    paint ─────────────────┘

Each stage: build prompt → invoke → extract → sanitize → cache. A failed
prerequisite never aborts a dependent; the dependent runs without that
context and records the degradation. An unreadable photo likewise fails only
the stages that need images; the others run on metadata alone. Only
validated results are cached.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable

from vehicle_analysis.cache import ResultCache
from vehicle_analysis.extractor import Extractor, extract_payload
from vehicle_analysis.fingerprint import (
    cache_key,
    content_fingerprint,
    context_discriminator,
    fingerprint_many,
    vehicle_bytes,
)
from vehicle_analysis.images import ImageAttachment, load_image_source, prepare_attachment
from vehicle_analysis.invoker import ModelRequest, OpenAIInvoker
from vehicle_analysis.prompts import PromptContext, SYSTEM_PROMPTS, build_prompt
from vehicle_analysis.sanitizer import (
    sanitize_comprehensive,
    sanitize_damage,
    sanitize_paint,
    sanitize_valuation,
)
from vehicle_analysis.models import (
    AnalysisError,
    AnalysisFailedError,
    AnalysisKind,
    AnalysisResult,
    ComprehensiveResult,
    InvalidImageError,
    PaintResult,
    PrerequisiteFailedError,
    Provenance,
    TransportError,
    ValuationResult,
    VehicleInfo,
)
from vehicle_analysis.config import (
    COMPREHENSIVE_MODEL,
    DAMAGE_MODEL,
    MAX_IMAGES_PER_REQUEST,
    PAINT_MODEL,
    REQUEST_TIMEOUT_SECONDS,
    RETRY_BUDGETS,
    TEMPERATURES,
    VALUATION_MODEL,
)

log = logging.getLogger(__name__)


class StageState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class AnalysisStage:
    """One node of the analysis DAG."""
    kind: AnalysisKind
    model: str
    temperature: float
    retry_budget: int
    requires: tuple[AnalysisKind, ...] = ()
    needs_images: bool = False


def default_stages() -> dict[AnalysisKind, AnalysisStage]:
    return {
        AnalysisKind.DAMAGE: AnalysisStage(
            kind=AnalysisKind.DAMAGE,
            model=DAMAGE_MODEL,
            temperature=TEMPERATURES[AnalysisKind.DAMAGE.value],
            retry_budget=RETRY_BUDGETS[AnalysisKind.DAMAGE.value],
            needs_images=True,
        ),
        AnalysisKind.VALUATION: AnalysisStage(
            kind=AnalysisKind.VALUATION,
            model=VALUATION_MODEL,
            temperature=TEMPERATURES[AnalysisKind.VALUATION.value],
            retry_budget=RETRY_BUDGETS[AnalysisKind.VALUATION.value],
            requires=(AnalysisKind.DAMAGE,),
        ),
        AnalysisKind.COMPREHENSIVE: AnalysisStage(
            kind=AnalysisKind.COMPREHENSIVE,
            model=COMPREHENSIVE_MODEL,
            temperature=TEMPERATURES[AnalysisKind.COMPREHENSIVE.value],
            retry_budget=RETRY_BUDGETS[AnalysisKind.COMPREHENSIVE.value],
            requires=(AnalysisKind.DAMAGE, AnalysisKind.VALUATION, AnalysisKind.PAINT),
        ),
        AnalysisKind.PAINT: AnalysisStage(
            kind=AnalysisKind.PAINT,
            model=PAINT_MODEL,
            temperature=TEMPERATURES[AnalysisKind.PAINT.value],
            retry_budget=RETRY_BUDGETS[AnalysisKind.PAINT.value],
            needs_images=True,
        ),
    }


# Topological order of the default DAG
STAGE_ORDER = (
    AnalysisKind.DAMAGE,
    AnalysisKind.PAINT,
    AnalysisKind.VALUATION,
    AnalysisKind.COMPREHENSIVE,
)


@dataclass(frozen=True)
class AnalysisRequest:
    """
    Shared input set for one run.

    images: raw bytes, data URLs, or paths, in order.
    deadline: absolute UTC time after which no further attempt is started.
    """
    images: tuple[bytes | str | Path, ...] = ()
    vehicle: VehicleInfo | None = None
    reference_year: int | None = None
    deadline: datetime | None = None


@dataclass
class StageOutcome:
    kind: AnalysisKind
    state: StageState = StageState.PENDING
    result: Any = None
    failure: AnalysisError | None = None
    attempts: int = 0
    from_cache: bool = False
    degraded: dict[AnalysisKind, PrerequisiteFailedError] = field(default_factory=dict)
    # set when the stage ran without photos because they could not be read
    image_error: InvalidImageError | None = None


@dataclass
class AnalysisRun:
    outcomes: dict[AnalysisKind, StageOutcome]

    def __getitem__(self, kind: AnalysisKind) -> StageOutcome:
        return self.outcomes[AnalysisKind(kind)]

    def result(self, kind: AnalysisKind) -> Any:
        return self[kind].result

    @property
    def succeeded(self) -> bool:
        return all(o.state is StageState.DONE for o in self.outcomes.values())


@dataclass
class _Inputs:
    fingerprint: str
    attachments: tuple[ImageAttachment, ...]
    image_error: InvalidImageError | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisOrchestrator:
    """
    Owns the invoker, extractor and cache for a set of analysis stages.

    Construct one per process (or per test); nothing here is global.
    """

    def __init__(
        self,
        invoker=None,
        cache: ResultCache | None = None,
        extractor: Extractor = extract_payload,
        stages: dict[AnalysisKind, AnalysisStage] | None = None,
        clock: Callable[[], datetime] = _utc_now,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.invoker = invoker if invoker is not None else OpenAIInvoker()
        self.cache = cache if cache is not None else ResultCache()
        self.extractor = extractor
        self.stages = stages if stages is not None else default_stages()
        self.clock = clock
        self.timeout = timeout

    # --- Public API ---

    def run(self, request: AnalysisRequest, kinds: Iterable[AnalysisKind | str]) -> AnalysisRun:
        """
        Runs the requested kinds plus every prerequisite they need.

        Never raises for analysis failures: each kind's outcome carries its
        own state and failure.
        """
        plan = self._plan(kinds)
        outcomes = {kind: StageOutcome(kind=kind) for kind in plan}
        inputs = self._prepare_inputs(request)

        for kind in plan:
            self._run_stage(self.stages[kind], request, inputs, outcomes)

        return AnalysisRun(outcomes=outcomes)

    def analyze_damage(
        self,
        images: Iterable[bytes | str | Path],
        vehicle: VehicleInfo | None = None,
        reference_year: int | None = None,
    ) -> AnalysisResult:
        request = AnalysisRequest(images=tuple(images), vehicle=vehicle, reference_year=reference_year)
        return self._single(AnalysisKind.DAMAGE, request)

    def estimate_value(
        self,
        vehicle: VehicleInfo,
        images: Iterable[bytes | str | Path] = (),
        reference_year: int | None = None,
    ) -> ValuationResult:
        request = AnalysisRequest(images=tuple(images), vehicle=vehicle, reference_year=reference_year)
        return self._single(AnalysisKind.VALUATION, request)

    def analyze_paint(
        self,
        images: Iterable[bytes | str | Path],
        vehicle: VehicleInfo | None = None,
        reference_year: int | None = None,
    ) -> PaintResult:
        request = AnalysisRequest(images=tuple(images), vehicle=vehicle, reference_year=reference_year)
        return self._single(AnalysisKind.PAINT, request)

    def comprehensive_report(
        self,
        images: Iterable[bytes | str | Path],
        vehicle: VehicleInfo | None = None,
        reference_year: int | None = None,
    ) -> ComprehensiveResult:
        request = AnalysisRequest(images=tuple(images), vehicle=vehicle, reference_year=reference_year)
        return self._single(AnalysisKind.COMPREHENSIVE, request)

    # --- Planning ---

    def _plan(self, kinds: Iterable[AnalysisKind | str]) -> list[AnalysisKind]:
        wanted: set[AnalysisKind] = set()
        pending = [AnalysisKind(k) for k in kinds]
        while pending:
            kind = pending.pop()
            if kind in wanted:
                continue
            wanted.add(kind)
            pending.extend(self.stages[kind].requires)
        return [kind for kind in STAGE_ORDER if kind in wanted]

    def _prepare_inputs(self, request: AnalysisRequest) -> _Inputs:
        sources = request.images
        if len(sources) > MAX_IMAGES_PER_REQUEST:
            log.warning("%d images supplied, using the first %d", len(sources), MAX_IMAGES_PER_REQUEST)
            sources = sources[:MAX_IMAGES_PER_REQUEST]

        # metadata-only runs: the vehicle itself is the primary content
        metadata_fingerprint = content_fingerprint(vehicle_bytes(request.vehicle))
        try:
            blobs = [load_image_source(source) for source in sources]
            attachments = tuple(prepare_attachment(blob) for blob in blobs)
        except InvalidImageError as e:
            log.warning("image intake failed: %s", e)
            return _Inputs(fingerprint=metadata_fingerprint, attachments=(), image_error=e)

        if not blobs:
            return _Inputs(fingerprint=metadata_fingerprint, attachments=())
        return _Inputs(fingerprint=fingerprint_many(blobs), attachments=attachments)

    # --- Stage Execution ---

    def _run_stage(
        self,
        stage: AnalysisStage,
        request: AnalysisRequest,
        inputs: _Inputs,
        outcomes: dict[AnalysisKind, StageOutcome],
    ) -> None:
        outcome = outcomes[stage.kind]

        context = {}
        for prerequisite in stage.requires:
            upstream = outcomes[prerequisite]
            if upstream.state is StageState.DONE:
                context[prerequisite] = upstream.result
                continue
            reason = upstream.failure.error_kind if upstream.failure else "not run"
            outcome.degraded[prerequisite] = PrerequisiteFailedError(
                f"{prerequisite.value} unavailable ({reason})"
            )
            log.warning("%s running without %s context (%s)", stage.kind.value, prerequisite.value, reason)

        if stage.needs_images:
            if inputs.image_error is not None:
                self._fail(outcome, inputs.image_error)
                return
            if not inputs.attachments:
                self._fail(outcome, InvalidImageError(f"{stage.kind.value} analysis requires at least one image"))
                return
        elif inputs.image_error is not None:
            outcome.image_error = inputs.image_error
            log.warning("%s running without photos (%s)", stage.kind.value, inputs.image_error)

        prompt_context = PromptContext(
            vehicle=request.vehicle,
            reference_year=request.reference_year,
            image_count=len(inputs.attachments),
            damage=context.get(AnalysisKind.DAMAGE),
            valuation=context.get(AnalysisKind.VALUATION),
            paint=context.get(AnalysisKind.PAINT),
        )
        discriminator = context_discriminator(
            request.vehicle,
            {kind.value: kind in context for kind in stage.requires},
            reference_year=request.reference_year,
        )
        key = cache_key(inputs.fingerprint, stage.kind.value, discriminator)

        model_request = ModelRequest(
            system_prompt=SYSTEM_PROMPTS[stage.kind],
            prompt=build_prompt(stage.kind, prompt_context),
            model=stage.model,
            temperature=stage.temperature,
            attachments=inputs.attachments,
            timeout=self.timeout,
        )

        outcome.state = StageState.RUNNING
        try:
            result, from_cache = self.cache.get_or_create(
                key,
                lambda: self._attempt(stage, model_request, context, request.deadline, outcome),
            )
        except AnalysisError as e:
            self._fail(outcome, e)
            return

        outcome.result = result
        outcome.from_cache = from_cache
        outcome.state = StageState.DONE
        log.info(
            "%s analysis done (attempts=%d, cached=%s, degraded=%s)",
            stage.kind.value, outcome.attempts, from_cache, sorted(k.value for k in outcome.degraded),
        )

    def _attempt(
        self,
        stage: AnalysisStage,
        model_request: ModelRequest,
        context: dict[AnalysisKind, Any],
        deadline: datetime | None,
        outcome: StageOutcome,
    ):
        """Invokes and sanitizes, retrying retryable failures within the stage budget."""
        last_error: AnalysisError | None = None

        budget = max(0, stage.retry_budget)
        for attempt in range(1, budget + 2):
            timeout = self._attempt_timeout(deadline)
            if timeout is not None and timeout <= 0:
                raise TransportError(
                    f"Deadline passed before attempt {attempt} of {stage.kind.value} analysis"
                ) from last_error

            outcome.attempts = attempt
            log.info("%s attempt %d/%d with %s", stage.kind.value, attempt, budget + 1, stage.model)

            try:
                reply = self.invoker.invoke(replace(model_request, timeout=timeout or self.timeout))
                raw = self.extractor(reply)
            except AnalysisError as e:
                if not e.retryable:
                    raise
                last_error = e
                log.warning("%s attempt %d failed: %s: %s", stage.kind.value, attempt, e.error_kind, e)
                continue

            provenance = Provenance(
                provider=getattr(self.invoker, "provider", "unknown"),
                model=stage.model,
                timestamp=self.clock().isoformat(),
            )
            return self._sanitize(stage.kind, raw, provenance, context)

        raise last_error

    def _attempt_timeout(self, deadline: datetime | None) -> float | None:
        if deadline is None:
            return None
        remaining = (deadline - self.clock()).total_seconds()
        return min(self.timeout, remaining)

    @staticmethod
    def _sanitize(kind: AnalysisKind, raw: Any, provenance: Provenance, context: dict[AnalysisKind, Any]):
        if kind is AnalysisKind.DAMAGE:
            return sanitize_damage(raw, provenance)
        if kind is AnalysisKind.VALUATION:
            return sanitize_valuation(raw, provenance, damage=context.get(AnalysisKind.DAMAGE))
        if kind is AnalysisKind.PAINT:
            return sanitize_paint(raw, provenance)
        return sanitize_comprehensive(
            raw,
            provenance,
            damage=context.get(AnalysisKind.DAMAGE),
            valuation=context.get(AnalysisKind.VALUATION),
            paint=context.get(AnalysisKind.PAINT),
        )

    @staticmethod
    def _fail(outcome: StageOutcome, error: AnalysisError) -> None:
        outcome.state = StageState.FAILED
        outcome.failure = error
        log.error("%s analysis failed: %s: %s", outcome.kind.value, error.error_kind, error)

    def _single(self, kind: AnalysisKind, request: AnalysisRequest):
        outcome = self.run(request, [kind])[kind]
        if outcome.state is not StageState.DONE:
            raise AnalysisFailedError(kind.value, outcome.failure.error_kind, str(outcome.failure)) from outcome.failure
        return outcome.result
