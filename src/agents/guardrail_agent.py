from typing import Any, Dict, Optional

from src.agents.base import Agent
from src.llm.backend import Part
from src.media.image_utils import sniff_mime
from src.pipeline.resilience import CROSS_MODE_ATTEMPTS, StageResult, resilient_call
from src.specs.agents.instructions import GUARDRAIL_INSTRUCTIONS
from src.specs.agents.outputs import FastGuardrailOut, ImageQAOut
from src.specs.common.enums import Mode, Stage, Verdict
from src.specs.models.domain import GuardrailVerdict

# QA-tier verdicts with no counterpart in the shared enum
_QA_VERDICT_MAP = {
    "NEEDS_RECOMPOSE": Verdict.TOO_WEAK_CHANGE,
    "NEEDS_CLEANUP": Verdict.TOO_WEAK_CHANGE,
}


def normalize_verdict(raw: str, passed: bool) -> Verdict:
    key = (raw or "").strip().upper()
    if key in _QA_VERDICT_MAP:
        return _QA_VERDICT_MAP[key]
    try:
        return Verdict(key)
    except ValueError:
        return Verdict.OK if passed else Verdict.ARTIFACTS


def auto_pass(image_index: int, evaluator: str) -> GuardrailVerdict:
    return GuardrailVerdict(image_index=image_index, passed=True, score=0, verdict=Verdict.OK, evaluator=evaluator)


class GuardrailAgent(Agent):
    """Judges an enhanced image against its original.

    The fast tier uses ``FAST_GUARDRAIL`` and the quality tier ``IMAGE_QA``;
    whichever the mode configures is used. No evaluator means an automatic
    pass.
    """

    def pick_evaluator(self, mode: Mode) -> Optional[Stage]:
        for stage in (Stage.FAST_GUARDRAIL, Stage.IMAGE_QA):
            if self.router.spec_for(stage, mode) is not None:
                return stage
        return None

    async def _evaluate(
        self,
        stage: Stage,
        image_index: int,
        original: bytes,
        enhanced: bytes,
        mode: Mode,
        label: str,
        max_attempts: Optional[int] = None,
    ):
        is_qa = stage == Stage.IMAGE_QA
        model = ImageQAOut if is_qa else FastGuardrailOut
        schema: Dict[str, Any] = model.model_json_schema()

        def parse(data: Dict[str, Any]) -> GuardrailVerdict:
            out = model.model_validate(data)
            return GuardrailVerdict(
                image_index=image_index,
                passed=out.pass_,
                score=out.score,
                verdict=normalize_verdict(out.verdict, out.pass_),
                reasons=out.reasons,
                revision_actions=out.revision_actions,
                evaluator="qa" if is_qa else "guardrail",
                breakdown=out.breakdown if is_qa else None,
            )

        parts = [
            Part.from_image(original, sniff_mime(original)),
            Part.from_image(enhanced, sniff_mime(enhanced)),
            Part.from_text(f"Image index {image_index}: first is ORIGINAL, second is ENHANCED."),
        ]
        return await self.router.call_json(
            stage, parts, GUARDRAIL_INSTRUCTIONS, schema, parse, mode=mode, label=label, max_attempts=max_attempts
        )

    async def run(self, image_index: int, original: bytes, enhanced: bytes) -> StageResult[GuardrailVerdict]:
        evaluator = self.pick_evaluator(self.mode)
        if evaluator is None:
            return StageResult(auto_pass(image_index, "skipped"))

        label = f"image[{image_index}]"

        async def primary():
            return await self._evaluate(evaluator, image_index, original, enhanced, self.mode, label)

        cross_mode = None
        fast_evaluator = self.pick_evaluator(Mode.FAST)
        if fast_evaluator is not None:
            async def cross_mode():
                return await self._evaluate(
                    fast_evaluator, image_index, original, enhanced, Mode.FAST, f"{label}:cross_mode",
                    max_attempts=CROSS_MODE_ATTEMPTS,
                )

        return await resilient_call(
            evaluator.value,
            self.mode,
            primary,
            lambda: auto_pass(image_index, "fallback"),
            cross_mode=cross_mode,
            trace_id=self.trace_id,
        )
