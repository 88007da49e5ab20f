from __future__ import annotations

from typing import Dict, Type

from pydantic import BaseModel

from .domain import (
    PostRequest,
    resolve_mode,
    PerImageUnderstanding,
    UnderstandingResult,
    RiskFlags,
    DirectorPlan,
    PromptCheck,
    RevisionAction,
    QABreakdown,
    GuardrailVerdict,
    GeneratedCopy,
    EnhancedImage,
    Variant,
    ImageScore,
    DebugInfo,
    OrchestratorResponse,
)


# Registry mapping output schema filenames to models for generation
SCHEMA_MODELS: Dict[str, Type[BaseModel]] = {
    "understanding.result.schema.json": UnderstandingResult,
    "director.plan.schema.json": DirectorPlan,
    "guardrail.verdict.schema.json": GuardrailVerdict,
    "generated.copy.schema.json": GeneratedCopy,
    "debug.info.schema.json": DebugInfo,
}

__all__ = [
    "PostRequest",
    "resolve_mode",
    "PerImageUnderstanding",
    "UnderstandingResult",
    "RiskFlags",
    "DirectorPlan",
    "PromptCheck",
    "RevisionAction",
    "QABreakdown",
    "GuardrailVerdict",
    "GeneratedCopy",
    "EnhancedImage",
    "Variant",
    "ImageScore",
    "DebugInfo",
    "OrchestratorResponse",
    "SCHEMA_MODELS",
]
