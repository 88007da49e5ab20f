"""
Pipeline orchestrator.

START -> UNDERSTANDING -> DIRECTION -> ENHANCE[i] -> TEXT -> ASSEMBLE -> DONE

Every stage has a deterministic fallback, so the only exceptions that leave
``run_orchestrator`` are usage errors (a refine without a trace id) and
programmer errors (a stage with no model configured).
"""
from __future__ import annotations

import asyncio
import os
from time import perf_counter
from typing import List, Optional, Tuple

from src.agents.copy_agent import CopyAgent
from src.agents.director_agent import VisualDirectorAgent, check_prompt
from src.agents.empathy_agent import EmpathyAgent
from src.agents.enhancement_agent import ImageEnhancementAgent, ImageOutcome
from src.agents.understanding_agent import UnderstandingAgent
from src.llm.backend import GenerativeBackend
from src.llm.router import ModelRouter
from src.pipeline.resilience import StageResult
from src.shared.logging_utils import elapsed_ms, info as log_info
from src.specs.common.enums import Action, RefineTarget, Stage
from src.specs.common.errors import RefineWithoutTraceError
from src.specs.common.trace import TraceRecord, generate_trace_id
from src.specs.models.domain import (
    DebugInfo,
    DirectorPlan,
    GeneratedCopy,
    OrchestratorResponse,
    PostRequest,
    Variant,
    resolve_mode,
)


def _enhance_concurrency() -> int:
    try:
        return max(1, int(os.getenv("AMPLIFY_ENHANCE_CONCURRENCY", "1")))
    except ValueError:
        return 1


def _runs_images(request: PostRequest) -> bool:
    return request.action == Action.CREATE or request.refine_target != RefineTarget.COPY


def _runs_copy(request: PostRequest) -> bool:
    return request.action == Action.CREATE or request.refine_target != RefineTarget.IMAGE


def _runs_empathy(request: PostRequest) -> bool:
    return request.action == Action.CREATE or request.refine_target == RefineTarget.BOTH


def _target_indices(request: PostRequest) -> Optional[List[int]]:
    if request.action == Action.REFINE and request.refine_image_index is not None:
        return [request.refine_image_index]
    return None


def _resolve_trace_id(request: PostRequest) -> str:
    if request.action == Action.REFINE:
        if not request.trace_id:
            raise RefineWithoutTraceError(details={"variantId": request.variant_id})
        return request.trace_id
    return request.trace_id or generate_trace_id()


async def run_orchestrator(
    request: PostRequest,
    backend: GenerativeBackend,
    *,
    concurrency: Optional[int] = None,
) -> OrchestratorResponse:
    """Run one create or refine invocation and assemble its response."""
    trace_id = _resolve_trace_id(request)
    mode = resolve_mode(request)
    router = ModelRouter(backend, mode, trace_id=trace_id)
    start = perf_counter()
    log_info(
        trace_id,
        "pipeline:start",
        action=request.action.value,
        mode=mode.value,
        images=len(request.images),
        references=len(request.reference_images),
    )

    records: Tuple[TraceRecord, ...] = ()
    degraded: List[str] = []

    def collect(stage: str, result: StageResult):
        nonlocal records
        records += result.records
        if result.degraded:
            degraded.append(stage)
        return result.value

    understanding = collect(Stage.UNDERSTANDING.value, await UnderstandingAgent(router).run(request))

    plans: List[DirectorPlan] = []
    outcomes: List[ImageOutcome] = []
    if _runs_images(request):
        plans = collect(Stage.VISUAL_DIRECTOR.value, await VisualDirectorAgent(router).run(request, understanding))
        outcomes = await ImageEnhancementAgent(router).run(
            request.images,
            plans,
            request.reference_images,
            indices=_target_indices(request),
            concurrency=concurrency or _enhance_concurrency(),
        )
        for outcome in outcomes:
            records += outcome.records
            degraded.extend(outcome.degraded)

    copy: Optional[GeneratedCopy] = None
    reply: Optional[str] = None
    text_jobs = []
    if _runs_copy(request):
        text_jobs.append(CopyAgent(router).run(request, understanding))
    if _runs_empathy(request):
        text_jobs.append(EmpathyAgent(router).run(request))
    if text_jobs:
        text_results = list(await asyncio.gather(*text_jobs))
        if _runs_copy(request):
            copy = collect(Stage.COPY.value, text_results.pop(0))
        if _runs_empathy(request):
            reply = collect(Stage.EMPATHY.value, text_results.pop(0))

    variant = Variant(
        id=request.variant_id if request.action == Action.REFINE and request.variant_id else f"{trace_id}_v1",
        trace_id=trace_id,
        tone_direction=understanding.suggested_tone or "Cinematic",
        caption=copy,
        images=[outcome.image for outcome in outcomes],
    )
    debug = DebugInfo(
        mode=mode,
        llm_trace=list(records),
        per_image_scores=[outcome.score for outcome in outcomes if outcome.score is not None],
        prompts=[plan.prompt for plan in plans],
        prompt_validation=[check_prompt(plan) for plan in plans],
        degraded_stages=degraded,
    )
    log_info(
        trace_id,
        "pipeline:done",
        durationMs=elapsed_ms(start),
        attempts=len(records),
        degraded=",".join(degraded),
    )
    return OrchestratorResponse(
        trace_id=trace_id,
        understanding=understanding,
        director_plans=plans,
        empathic_reply=reply,
        variants=[variant],
        debug=debug,
    )


__all__ = ["run_orchestrator"]
