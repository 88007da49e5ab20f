from pydantic import BaseModel, Field
from typing import List, Optional

from src.media.image_utils import decode_image, encode_image
from src.specs.common.enums import (
    Action,
    Intent,
    Language,
    Mode,
    Mood,
    Platform,
    RefineMode,
    RefineTarget,
    Verdict,
)
from src.specs.models.domain import (
    DebugInfo,
    DirectorPlan,
    GeneratedCopy,
    OrchestratorResponse,
    PostRequest,
    UnderstandingResult,
    Variant,
)


class GeneratePostRequest(BaseModel):
    """HTTP body for create and refine calls; images are base64 or data URLs."""

    images: List[str] = Field(default_factory=list)
    reference_images: List[str] = Field(default_factory=list)
    raw_text: str = ""
    platform: Platform
    mood_user: Mood
    intent_user: Intent
    language: Language = Language.EN
    enable_l4_loop: bool = False
    performance_mode: Optional[Mode] = None
    action: Action = Action.CREATE
    traceId: Optional[str] = None
    variant_id: Optional[str] = None
    refine_mode: RefineMode = RefineMode.NONE
    refine_instruction: Optional[str] = None
    refine_target: RefineTarget = RefineTarget.BOTH
    refine_image_index: Optional[int] = None

    def to_domain(self) -> PostRequest:
        return PostRequest(
            images=[decode_image(img, field=f"images[{i}]") for i, img in enumerate(self.images)],
            reference_images=[
                decode_image(img, field=f"reference_images[{i}]") for i, img in enumerate(self.reference_images)
            ],
            raw_text=self.raw_text,
            platform=self.platform,
            mood_user=self.mood_user,
            intent_user=self.intent_user,
            language=self.language,
            enable_l4_loop=self.enable_l4_loop,
            performance_mode=self.performance_mode,
            action=self.action,
            trace_id=self.traceId,
            variant_id=self.variant_id,
            refine_mode=self.refine_mode,
            refine_instruction=self.refine_instruction,
            refine_target=self.refine_target,
            refine_image_index=self.refine_image_index,
        )


class ImagePayload(BaseModel):
    index: int
    data: str
    enhanced: bool
    rescued: bool = False
    verdict: Optional[Verdict] = None


class VariantPayload(BaseModel):
    id: str
    style_name: str
    usage_hint: str
    tone_direction: str
    visual_direction: str
    caption: Optional[GeneratedCopy] = None
    images: List[ImagePayload] = Field(default_factory=list)

    @classmethod
    def from_variant(cls, variant: Variant) -> "VariantPayload":
        return cls(
            id=variant.id,
            style_name=variant.style_name,
            usage_hint=variant.usage_hint,
            tone_direction=variant.tone_direction,
            visual_direction=variant.visual_direction,
            caption=variant.caption,
            images=[
                ImagePayload(
                    index=img.index,
                    data=encode_image(img.data),
                    enhanced=img.enhanced,
                    rescued=img.rescued,
                    verdict=img.verdict,
                )
                for img in variant.images
            ],
        )


class GeneratePostResponse(BaseModel):
    success: bool = Field(..., description="False only on error responses")
    message: Optional[str] = Field(None, description="Status message")
    traceId: str = Field(..., description="Session trace id; send it back on refine")
    understanding: UnderstandingResult
    directorPlans: List[DirectorPlan] = Field(default_factory=list)
    empathicReply: Optional[str] = None
    variants: List[VariantPayload]
    debugInfo: DebugInfo

    @classmethod
    def from_result(cls, result: OrchestratorResponse) -> "GeneratePostResponse":
        return cls(
            success=True,
            message="Post generated",
            traceId=result.trace_id,
            understanding=result.understanding,
            directorPlans=result.director_plans,
            empathicReply=result.empathic_reply,
            variants=[VariantPayload.from_variant(v) for v in result.variants],
            debugInfo=result.debug,
        )


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    errorCode: Optional[str] = None
    details: Optional[dict] = None
