from src.agents.base import Agent
from src.llm.backend import Part
from src.pipeline.resilience import CROSS_MODE_ATTEMPTS, StageResult, resilient_call
from src.specs.agents.instructions import EMPATHY_FALLBACK, EMPATHY_INSTRUCTIONS
from src.specs.common.enums import Mode, Stage
from src.specs.models.domain import PostRequest


def fallback_reply(request: PostRequest) -> str:
    template = EMPATHY_FALLBACK.get(request.language.value, EMPATHY_FALLBACK["en"])
    return template.format(text=request.raw_text.strip())


class EmpathyAgent(Agent):
    """Short supportive reply to the user's note."""

    async def run(self, request: PostRequest) -> StageResult[str]:
        parts = [
            Part.from_text(
                f"{request.raw_text}\n(mood: {request.mood_user.value}, reply language: {request.language.value})"
            )
        ]

        async def primary():
            return await self.router.call_text(Stage.EMPATHY, parts, EMPATHY_INSTRUCTIONS)

        async def fast_tier():
            return await self.router.call_text(
                Stage.EMPATHY, parts, EMPATHY_INSTRUCTIONS, mode=Mode.FAST, label="cross_mode",
                max_attempts=CROSS_MODE_ATTEMPTS,
            )

        return await resilient_call(
            Stage.EMPATHY.value,
            self.mode,
            primary,
            lambda: fallback_reply(request),
            cross_mode=fast_tier,
            trace_id=self.trace_id,
        )
