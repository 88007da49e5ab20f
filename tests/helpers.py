"""Scripted generative backend and canned stage answers."""
import io
import json
from typing import Any, Dict, List

from PIL import Image

from src.specs.agents.instructions import (
    COPY_INSTRUCTIONS,
    DIRECTOR_INSTRUCTIONS,
    EMPATHY_INSTRUCTIONS,
    GUARDRAIL_INSTRUCTIONS,
    UNDERSTANDING_INSTRUCTIONS,
)
from src.specs.common.errors import BackendError

_KIND_BY_INSTRUCTION = {
    UNDERSTANDING_INSTRUCTIONS: "understanding",
    DIRECTOR_INSTRUCTIONS: "director",
    GUARDRAIL_INSTRUCTIONS: "guardrail",
    COPY_INSTRUCTIONS: "copy",
    EMPATHY_INSTRUCTIONS: "empathy",
}


class FakeBackend:
    """Answers each call kind from a script.

    A script is a single response or a list consumed in order, the last
    entry repeating. Exception instances are raised instead of returned.
    """

    def __init__(self, **scripts: Any) -> None:
        self.scripts: Dict[str, List[Any]] = {
            kind: list(value) if isinstance(value, list) else [value] for kind, value in scripts.items()
        }
        self.calls: List[Dict[str, Any]] = []

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call["kind"] == kind)

    def _next(self, kind: str) -> Any:
        script = self.scripts.get(kind)
        if not script:
            raise BackendError(f"no scripted response for {kind}")
        value = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(value, Exception):
            raise value
        return value

    async def generate_json(self, *, model, parts, system_instruction, schema, spec) -> str:
        kind = _KIND_BY_INSTRUCTION[system_instruction]
        self.calls.append({"kind": kind, "model": model, "parts": list(parts)})
        value = self._next(kind)
        return value if isinstance(value, str) else json.dumps(value)

    async def generate_text(self, *, model, parts, system_instruction, spec) -> str:
        kind = _KIND_BY_INSTRUCTION[system_instruction]
        self.calls.append({"kind": kind, "model": model, "parts": list(parts)})
        return self._next(kind)

    async def generate_image(self, *, model, prompt, image, reference_images, spec):
        self.calls.append({"kind": "image", "model": model, "prompt": prompt, "image": image})
        return self._next("image")


def png_bytes(color=(200, 120, 40), size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


UNDERSTANDING_OK = {
    "story_core": "A long day winding down with coffee",
    "user_intent": "seek_empathy",
    "platform": "wechat",
    "mood": "tired",
    "suggested_tone": "emotional_poetic",
    "target_aesthetic": ["warm", "quiet"],
    "per_image": [{"image_index": 0, "what_matters": ["coffee cup"], "risks": ["glare"]}],
}

DIRECTOR_OK = {
    "images": [
        {
            "image_index": 0,
            "nano_prompt": (
                "Subject: [SUBJECT]. Lighting: warm window key. "
                "Environment: tidy desk. Color: amber highlights."
            ),
            "plan": {"cleanup": {"remove_list": ["cables"]}},
            "prompt_meta": {"shot_type": "close_up"},
        }
    ]
}

GUARDRAIL_PASS = {"pass": True, "score": 8.5, "verdict": "OK", "reasons": []}
GUARDRAIL_FAIL = {
    "pass": False,
    "score": 3,
    "verdict": "ARTIFACTS",
    "reasons": ["floating dots near the cup"],
    "revision_actions": [{"action": "CLEAN", "instruction": "remove dots"}],
}

COPY_OK = {"title": "Slow evening", "main_text": "Today I'm tired, but the coffee helps.", "hash_tags": ["#evening", "coffee"]}
EMPATHY_OK = "That sounds exhausting. Be gentle with yourself tonight."

ENHANCED = b"enhanced-image"
RESCUED = b"rescued-image"




def director_answer(count: int) -> dict:
    template = DIRECTOR_OK["images"][0]
    return {"images": [{**template, "image_index": i} for i in range(count)]}
