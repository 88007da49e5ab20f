"""
Capability contract for the generative backend.

The pipeline never talks to a provider directly; it hands prompt parts to
a ``GenerativeBackend`` and treats an exception, an empty payload or a
missing image as a failed attempt.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from src.llm.router import StageSpec


@dataclass(frozen=True)
class Part:
    """A prompt part: either text or an inline image."""

    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "Part":
        return cls(text=text)

    @classmethod
    def from_image(cls, data: bytes, mime_type: str = "image/png") -> "Part":
        return cls(data=data, mime_type=mime_type)

    @property
    def is_image(self) -> bool:
        return self.data is not None


class GenerativeBackend(Protocol):
    """Protocol implemented by concrete model providers and by test fakes."""

    async def generate_json(
        self,
        *,
        model: str,
        parts: Sequence[Part],
        system_instruction: str,
        schema: Dict[str, Any],
        spec: "StageSpec",
    ) -> str:
        """Return the raw text of a JSON answer shaped by ``schema``."""
        ...

    async def generate_text(
        self,
        *,
        model: str,
        parts: Sequence[Part],
        system_instruction: str,
        spec: "StageSpec",
    ) -> str:
        ...

    async def generate_image(
        self,
        *,
        model: str,
        prompt: str,
        image: bytes,
        reference_images: Sequence[bytes],
        spec: "StageSpec",
    ) -> Optional[bytes]:
        """Return the encoded image payload, or None when the answer had none."""
        ...


__all__ = ["Part", "GenerativeBackend"]
