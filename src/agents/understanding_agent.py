from typing import Any, Dict, List

from src.agents.base import Agent
from src.llm.backend import Part
from src.media.image_utils import sniff_mime
from src.pipeline.resilience import CROSS_MODE_ATTEMPTS, StageResult, resilient_call
from src.specs.agents.instructions import UNDERSTANDING_INSTRUCTIONS
from src.specs.common.enums import Mode, Platform, Stage
from src.specs.models.domain import PerImageUnderstanding, PostRequest, UnderstandingResult

_PLATFORM_TAGS = {
    Platform.WECHAT_MOMENTS: "wechat",
    Platform.XIAOHONGSHU: "rednote",
}


def _note(request: PostRequest) -> str:
    return (
        f"User note: {request.raw_text}\n"
        f"Mood: {request.mood_user.value}; intent: {request.intent_user.value}; "
        f"platform: {request.platform.value}; language: {request.language.value}; "
        f"photos attached: {len(request.images)}"
    )


def _with_all_images(result: UnderstandingResult, image_count: int) -> UnderstandingResult:
    """Keep one per-image entry per upload, in index order."""
    by_index = {}
    for item in result.per_image:
        if 0 <= item.image_index < image_count and item.image_index not in by_index:
            by_index[item.image_index] = item
    per_image = [by_index.get(i) or PerImageUnderstanding(image_index=i) for i in range(image_count)]
    return result.model_copy(update={"per_image": per_image})


def fallback_understanding(request: PostRequest) -> UnderstandingResult:
    return UnderstandingResult(
        story_core=request.raw_text,
        user_intent=request.intent_user.value,
        platform=_PLATFORM_TAGS.get(request.platform, "unknown"),
        mood=request.mood_user.value,
        per_image=[PerImageUnderstanding(image_index=i) for i in range(len(request.images))],
    )


class UnderstandingAgent(Agent):
    """Reads the photos and note into a story core and per-image notes."""

    async def run(self, request: PostRequest) -> StageResult[UnderstandingResult]:
        schema: Dict[str, Any] = UnderstandingResult.model_json_schema()
        image_count = len(request.images)

        def parse(data: Dict[str, Any]) -> UnderstandingResult:
            return _with_all_images(UnderstandingResult.model_validate(data), image_count)

        image_parts: List[Part] = [Part.from_image(img, sniff_mime(img)) for img in request.images]

        async def primary():
            return await self.router.call_json(
                Stage.UNDERSTANDING,
                [*image_parts, Part.from_text(_note(request))],
                UNDERSTANDING_INSTRUCTIONS,
                schema,
                parse,
            )

        async def text_only():
            # images are dropped on this tier
            return await self.router.call_json(
                Stage.UNDERSTANDING,
                [Part.from_text(_note(request))],
                UNDERSTANDING_INSTRUCTIONS,
                schema,
                parse,
                mode=Mode.FAST,
                label="cross_mode",
                max_attempts=CROSS_MODE_ATTEMPTS,
            )

        return await resilient_call(
            Stage.UNDERSTANDING.value,
            self.mode,
            primary,
            lambda: fallback_understanding(request),
            cross_mode=text_only,
            trace_id=self.trace_id,
        )
