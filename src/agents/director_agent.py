import json
from typing import Any, Dict, List, Optional

from src.agents.base import Agent
from src.llm.backend import Part
from src.media.image_utils import sniff_mime
from src.pipeline.resilience import CROSS_MODE_ATTEMPTS, StageResult, resilient_call
from src.specs.agents.instructions import (
    ACTION_SUFFIX,
    DEFAULT_SUBJECT,
    DIRECTOR_INSTRUCTIONS,
    DIRECTOR_TEMPLATE,
    DIRECTOR_USER_HINT,
    IMAGE_REFINE_DIRECTIVES,
    PLATFORM_NAMES,
    PROMPT_MARKERS,
    REFERENCE_NOTE,
    SUBJECT_PLACEHOLDER,
)
from src.specs.agents.outputs import DirectorOut
from src.specs.common.enums import Action, Mode, RefineTarget, Stage
from src.specs.models.domain import DirectorPlan, PostRequest, PromptCheck, UnderstandingResult


def construct_prompt(template: str, platform: str, subject: Optional[str], reference_count: int) -> str:
    """Fill the subject placeholder and append the platform action line."""
    prompt = (template or "").replace(SUBJECT_PLACEHOLDER, subject or DEFAULT_SUBJECT)
    action = ACTION_SUFFIX.format(platform=PLATFORM_NAMES.get(platform, platform))
    if reference_count > 0:
        action = f"{action} {REFERENCE_NOTE}"
    return f"{prompt}\n{action}".strip()


def check_prompt(plan: DirectorPlan) -> PromptCheck:
    missing = [marker for marker in PROMPT_MARKERS if marker not in plan.prompt]
    return PromptCheck(image_index=plan.image_index, ok=not missing, missing_markers=missing)


def _refine_line(request: PostRequest) -> str:
    if request.action != Action.REFINE or request.refine_target == RefineTarget.COPY:
        return ""
    lines = []
    directive = IMAGE_REFINE_DIRECTIVES.get(request.refine_mode.value)
    if directive:
        lines.append(directive)
    if request.refine_instruction:
        lines.append(request.refine_instruction.strip())
    return f"[REFINE]: {' '.join(lines)}" if lines else ""


def _finish(request: PostRequest, understanding: UnderstandingResult, image_index: int, template: str) -> str:
    prompt = construct_prompt(
        template,
        request.platform.value,
        understanding.subject_for(image_index),
        len(request.reference_images),
    )
    refine = _refine_line(request)
    return f"{prompt}\n{refine}" if refine else prompt


def fallback_plans(request: PostRequest, understanding: UnderstandingResult) -> List[DirectorPlan]:
    return [
        DirectorPlan(image_index=i, prompt=_finish(request, understanding, i, DIRECTOR_TEMPLATE))
        for i in range(len(request.images))
    ]


class VisualDirectorAgent(Agent):
    """Turns understanding notes into one enhancement prompt per image."""

    async def run(self, request: PostRequest, understanding: UnderstandingResult) -> StageResult[List[DirectorPlan]]:
        if not request.images:
            return StageResult([])

        image_count = len(request.images)
        schema: Dict[str, Any] = DirectorOut.model_json_schema()
        notes = json.dumps(
            [item.model_dump() for item in understanding.per_image],
            ensure_ascii=False,
        )
        parts = [
            *[Part.from_image(img, sniff_mime(img)) for img in request.images],
            Part.from_text(f"{DIRECTOR_USER_HINT}\nPer-image notes: {notes}"),
        ]

        def parse(data: Dict[str, Any]) -> List[DirectorPlan]:
            out = DirectorOut.model_validate(data)
            plans: Dict[int, DirectorPlan] = {}
            for image in out.images:
                if not 0 <= image.image_index < image_count or image.image_index in plans:
                    continue
                plans[image.image_index] = DirectorPlan(
                    image_index=image.image_index,
                    prompt=_finish(request, understanding, image.image_index, image.nano_prompt),
                    risk_flags=image.risk_flags,
                    remove_list=image.plan.cleanup.remove_list,
                    shot_type=image.prompt_meta.shot_type,
                )
            return [plans[i] for i in sorted(plans)]

        async def primary():
            return await self.router.call_json(Stage.VISUAL_DIRECTOR, parts, DIRECTOR_INSTRUCTIONS, schema, parse)

        async def fast_tier():
            return await self.router.call_json(
                Stage.VISUAL_DIRECTOR, parts, DIRECTOR_INSTRUCTIONS, schema, parse,
                mode=Mode.FAST, label="cross_mode", max_attempts=CROSS_MODE_ATTEMPTS,
            )

        return await resilient_call(
            Stage.VISUAL_DIRECTOR.value,
            self.mode,
            primary,
            lambda: fallback_plans(request, understanding),
            cross_mode=fast_tier,
            trace_id=self.trace_id,
        )
