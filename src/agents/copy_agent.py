from typing import Any, Dict, List

from src.agents.base import Agent
from src.llm.backend import Part
from src.pipeline.resilience import CROSS_MODE_ATTEMPTS, StageResult, resilient_call
from src.specs.agents.instructions import COPY_INSTRUCTIONS, COPY_REFINE_DIRECTIVES, PLATFORM_NAMES
from src.specs.common.enums import Action, Mode, RefineTarget, Stage
from src.specs.models.domain import GeneratedCopy, PostRequest, UnderstandingResult

_TITLE_LIMIT = 20


def _clean_hashtags(tags: List[str]) -> List[str]:
    cleaned = []
    for tag in tags:
        value = tag.replace("#", "").strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def fallback_copy(request: PostRequest) -> GeneratedCopy:
    text = request.raw_text.strip()
    first_line = text.splitlines()[0] if text else ""
    return GeneratedCopy(title=first_line[:_TITLE_LIMIT], main_text=text, hash_tags=[])


def _brief(request: PostRequest, understanding: UnderstandingResult) -> str:
    lines = [
        f"User note: {request.raw_text}",
        f"Platform: {PLATFORM_NAMES.get(request.platform.value, request.platform.value)}",
        f"Language: {request.language.value}",
        f"Mood: {request.mood_user.value}; intent: {request.intent_user.value}",
        f"Story core: {understanding.story_core}",
    ]
    if understanding.suggested_tone:
        lines.append(f"Tone: {understanding.suggested_tone}")
    if understanding.target_aesthetic:
        lines.append(f"Aesthetic: {', '.join(understanding.target_aesthetic)}")
    if request.action == Action.REFINE and request.refine_target != RefineTarget.IMAGE:
        directive = COPY_REFINE_DIRECTIVES.get(request.refine_mode.value)
        if directive:
            lines.append(directive)
        if request.refine_instruction:
            lines.append(f"User instruction: {request.refine_instruction.strip()}")
    return "\n".join(lines)


class CopyAgent(Agent):
    async def run(self, request: PostRequest, understanding: UnderstandingResult) -> StageResult[GeneratedCopy]:
        schema: Dict[str, Any] = GeneratedCopy.model_json_schema()
        parts = [Part.from_text(_brief(request, understanding))]

        def parse(data: Dict[str, Any]) -> GeneratedCopy:
            copy = GeneratedCopy.model_validate(data)
            if not copy.main_text.strip():
                raise ValueError("caption main_text is empty")
            return copy.model_copy(update={"hash_tags": _clean_hashtags(copy.hash_tags)})

        async def primary():
            return await self.router.call_json(Stage.COPY, parts, COPY_INSTRUCTIONS, schema, parse)

        async def fast_tier():
            return await self.router.call_json(
                Stage.COPY, parts, COPY_INSTRUCTIONS, schema, parse, mode=Mode.FAST, label="cross_mode",
                max_attempts=CROSS_MODE_ATTEMPTS,
            )

        return await resilient_call(
            Stage.COPY.value,
            self.mode,
            primary,
            lambda: fallback_copy(request),
            cross_mode=fast_tier,
            trace_id=self.trace_id,
        )
