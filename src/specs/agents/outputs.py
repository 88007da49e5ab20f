from pydantic import BaseModel, Field
from typing import List, Optional

from src.specs.models.domain import QABreakdown, RevisionAction, RiskFlags

GUARDRAIL_VERDICTS = ["OK", "COLOR_CAST", "ARTIFACTS", "TOO_WEAK_CHANGE", "WORSE_THAN_ORIGINAL"]
# QA-only verdicts fold into TOO_WEAK_CHANGE when mapped to the shared enum
QA_VERDICTS = ["OK", "COLOR_CAST", "ARTIFACTS", "TOO_WEAK_CHANGE", "NEEDS_RECOMPOSE", "NEEDS_CLEANUP"]


class DirectorCleanup(BaseModel):
    remove_list: List[str] = Field(default_factory=list)


class DirectorPlanBody(BaseModel):
    cleanup: DirectorCleanup = Field(default_factory=DirectorCleanup)


class DirectorPromptMeta(BaseModel):
    shot_type: Optional[str] = None


class DirectorImageOut(BaseModel):
    image_index: int
    nano_prompt: str
    risk_flags: RiskFlags = Field(default_factory=RiskFlags)
    plan: DirectorPlanBody = Field(default_factory=DirectorPlanBody)
    prompt_meta: DirectorPromptMeta = Field(default_factory=DirectorPromptMeta)


class DirectorOut(BaseModel):
    images: List[DirectorImageOut]


class FastGuardrailOut(BaseModel):
    pass_: bool = Field(alias="pass")
    score: float = 0
    verdict: str = Field(json_schema_extra={"enum": GUARDRAIL_VERDICTS})
    reasons: List[str] = Field(default_factory=list)
    revision_actions: List[RevisionAction] = Field(default_factory=list)


class ImageQAOut(BaseModel):
    pass_: bool = Field(alias="pass")
    score: float = 0
    breakdown: QABreakdown = Field(default_factory=QABreakdown)
    verdict: str = Field(json_schema_extra={"enum": QA_VERDICTS})
    reasons: List[str] = Field(default_factory=list)
    revision_actions: List[RevisionAction] = Field(default_factory=list)
