import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from src.agents.base import Agent
from src.agents.guardrail_agent import GuardrailAgent
from src.pipeline.resilience import CROSS_MODE_ATTEMPTS, resilient_call
from src.shared.logging_utils import info as log_info, warning as log_warning
from src.specs.agents.instructions import RESCUE_DIRECTIVE
from src.specs.common.enums import Mode, Stage
from src.specs.common.errors import StageExhaustedError
from src.specs.common.trace import TraceRecord
from src.specs.models.domain import DirectorPlan, EnhancedImage, ImageScore


@dataclass(frozen=True)
class ImageOutcome:
    image: EnhancedImage
    score: Optional[ImageScore]
    records: Tuple[TraceRecord, ...]
    degraded: Tuple[str, ...] = ()


# the rescue is one image-generation call
RESCUE_ATTEMPTS = 1


def rescue_prompt(prompt: str) -> str:
    return f"{prompt}\n{RESCUE_DIRECTIVE}"


def rescue_mode(mode: Mode) -> Mode:
    """Rescue runs in quality; it never downgrades."""
    return Mode.QUALITY if mode == Mode.FAST else mode


class ImageEnhancementAgent(Agent):
    """Generate -> guardrail -> single rescue, per image.

    Each image is independent: a failure on one index yields the original
    upload for that index and never stops the others.
    """

    async def enhance_one(
        self,
        image_index: int,
        source: bytes,
        plan: DirectorPlan,
        reference_images: Sequence[bytes] = (),
    ) -> ImageOutcome:
        label = f"image[{image_index}]"
        degraded: List[str] = []

        async def primary():
            return await self.router.call_image(plan.prompt, source, reference_images, label=label)

        async def fast_tier():
            return await self.router.call_image(
                plan.prompt, source, reference_images, mode=Mode.FAST, label=f"{label}:cross_mode",
                max_attempts=CROSS_MODE_ATTEMPTS,
            )

        generated = await resilient_call(
            f"{Stage.IMAGE_GEN.value}[{image_index}]",
            self.mode,
            primary,
            lambda: None,
            cross_mode=fast_tier,
            trace_id=self.trace_id,
        )
        records = generated.records
        if generated.degraded:
            degraded.append(f"{Stage.IMAGE_GEN.value}[{image_index}]")
        if generated.value is None:
            log_warning(self.trace_id, "enhance:using_original", imageIndex=image_index)
            return ImageOutcome(EnhancedImage(index=image_index, data=source), None, records, tuple(degraded))

        result = generated.value
        guard = await GuardrailAgent(self.router).run(image_index, source, result)
        records += guard.records
        if guard.degraded:
            degraded.append(f"GUARDRAIL[{image_index}]")
        verdict = guard.value

        rescued = False
        if not verdict.passed:
            used_mode = rescue_mode(self.mode)
            log_info(
                self.trace_id,
                "enhance:rescue",
                imageIndex=image_index,
                verdict=verdict.verdict.value,
                mode=used_mode.value,
            )
            try:
                traced = await self.router.call_image(
                    rescue_prompt(plan.prompt), source, reference_images, mode=used_mode, label=f"{label}:rescue",
                    max_attempts=RESCUE_ATTEMPTS,
                )
                records += traced.records
                # accepted without a second guardrail pass
                result = traced.value
                rescued = True
            except StageExhaustedError as exc:
                records += exc.records
                log_warning(self.trace_id, "enhance:rescue_failed", imageIndex=image_index, error=str(exc.last_error))

        score = ImageScore(
            index=image_index,
            type=verdict.evaluator,
            score=verdict.score,
            verdict=verdict.verdict,
            rescued=rescued,
        )
        image = EnhancedImage(
            index=image_index,
            data=result,
            enhanced=True,
            rescued=rescued,
            verdict=verdict.verdict,
        )
        return ImageOutcome(image, score, records, tuple(degraded))

    async def run(
        self,
        images: Sequence[bytes],
        plans: Sequence[DirectorPlan],
        reference_images: Sequence[bytes] = (),
        *,
        indices: Optional[Sequence[int]] = None,
        concurrency: int = 1,
    ) -> List[ImageOutcome]:
        """Enhance ``indices`` (default: every image), ordered by index.

        ``concurrency`` bounds how many images are in flight; 1 keeps the
        loop sequential. Indices without a plan return the original.
        """
        by_index: Dict[int, DirectorPlan] = {plan.image_index: plan for plan in plans}
        targets = [i for i in (range(len(images)) if indices is None else indices) if 0 <= i < len(images)]
        limit = asyncio.Semaphore(max(1, concurrency))

        async def one(i: int) -> ImageOutcome:
            plan = by_index.get(i)
            if plan is None:
                return ImageOutcome(EnhancedImage(index=i, data=images[i]), None, ())
            async with limit:
                return await self.enhance_one(i, images[i], plan, reference_images)

        return list(await asyncio.gather(*(one(i) for i in targets)))
