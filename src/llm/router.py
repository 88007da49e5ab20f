"""
Mode-based model routing with uniform retry and trace recording.

``MODEL_MATRIX`` maps (mode, stage) to a ``StageSpec``; a ``None`` cell
means the stage is not available in that mode. ``ModelRouter.execute`` is
the one place where attempts are retried and recorded, so every stage gets
the same audit trail.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Generic, Literal, Optional, Sequence, Tuple, TypeVar

from src.llm.backend import GenerativeBackend, Part
from src.shared.logging_utils import elapsed_ms, info as log_info, warning as log_warning
from src.specs.common.enums import Mode, Stage
from src.specs.common.errors import EmptyResponseError, StageExhaustedError, StageNotConfiguredError
from src.specs.common.trace import TraceRecord

T = TypeVar("T")


@dataclass(frozen=True)
class StageSpec:
    model: str
    temperature: float
    retries: int
    response_format: Literal["json", "text", "image"] = "text"
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_output_tokens: Optional[int] = None

    @property
    def retry_budget(self) -> int:
        return max(1, self.retries)


MODEL_MATRIX: Dict[Mode, Dict[Stage, Optional[StageSpec]]] = {
    Mode.FAST: {
        Stage.UNDERSTANDING: StageSpec("gpt-4.1", 0.2, 2, "json"),
        Stage.VISUAL_DIRECTOR: StageSpec("gpt-4.1", 0.4, 2, "json"),
        # 0.5 keeps structural changes without random noise
        Stage.IMAGE_GEN: StageSpec("gpt-image-1-mini", 0.5, 2, "image", max_output_tokens=1024),
        Stage.FAST_GUARDRAIL: StageSpec("gpt-4.1-nano", 0.1, 1, "json"),
        Stage.IMAGE_QA: None,
        Stage.COPY: StageSpec("gpt-4.1-mini", 0.7, 2, "json"),
        Stage.EMPATHY: StageSpec("gpt-4.1-mini", 0.5, 2, "text", max_output_tokens=100),
    },
    Mode.QUALITY: {
        Stage.UNDERSTANDING: StageSpec("gpt-4.1", 0.2, 3, "json"),
        Stage.VISUAL_DIRECTOR: StageSpec("gpt-4.1", 0.4, 3, "json"),
        Stage.IMAGE_GEN: StageSpec("gpt-image-1", 0.55, 3, "image", top_p=0.9, top_k=30),
        Stage.FAST_GUARDRAIL: None,
        Stage.IMAGE_QA: StageSpec("gpt-4.1-mini", 0.1, 2, "json"),
        Stage.COPY: StageSpec("gpt-4.1", 0.7, 3, "json"),
        Stage.EMPATHY: StageSpec("gpt-4.1", 0.5, 2, "text", max_output_tokens=100),
    },
}


def resolve_spec(
    mode: Mode,
    stage: Stage,
    matrix: Optional[Dict[Mode, Dict[Stage, Optional[StageSpec]]]] = None,
) -> Optional[StageSpec]:
    table = MODEL_MATRIX if matrix is None else matrix
    return table.get(mode, {}).get(stage)


def require_spec(
    mode: Mode,
    stage: Stage,
    matrix: Optional[Dict[Mode, Dict[Stage, Optional[StageSpec]]]] = None,
) -> StageSpec:
    spec = resolve_spec(mode, stage, matrix)
    if spec is None:
        raise StageNotConfiguredError(mode.value, stage.value)
    return spec


@dataclass(frozen=True)
class Traced(Generic[T]):
    """A stage value together with the trace records it produced."""

    value: T
    records: Tuple[TraceRecord, ...] = ()


_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def parse_json_text(text: Optional[str]) -> Dict[str, Any]:
    """Parse a model's JSON answer, tolerating Markdown code fences."""
    cleaned = _FENCE.sub("", text or "").strip()
    if not cleaned:
        raise EmptyResponseError("empty JSON response")
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise EmptyResponseError(f"expected a JSON object, got {type(data).__name__}")
    return data


class ModelRouter:
    """Resolves stage specs for one invocation and runs backend calls.

    The router holds no trace list of its own: every call returns its
    records in a ``Traced`` value (or on ``StageExhaustedError``), and the
    orchestrator concatenates them.
    """

    def __init__(
        self,
        backend: GenerativeBackend,
        mode: Mode,
        *,
        trace_id: Optional[str] = None,
        matrix: Optional[Dict[Mode, Dict[Stage, Optional[StageSpec]]]] = None,
    ) -> None:
        self._backend = backend
        self._mode = mode
        self._trace_id = trace_id
        self._matrix = MODEL_MATRIX if matrix is None else matrix

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def trace_id(self) -> Optional[str]:
        return self._trace_id

    def spec_for(self, stage: Stage, mode: Optional[Mode] = None) -> Optional[StageSpec]:
        return resolve_spec(mode or self._mode, stage, self._matrix)

    def require(self, stage: Stage, mode: Optional[Mode] = None) -> StageSpec:
        return require_spec(mode or self._mode, stage, self._matrix)

    async def execute(
        self,
        stage: Stage,
        spec: StageSpec,
        attempt: Callable[[], Awaitable[T]],
        validate: Optional[Callable[[T], bool]] = None,
        *,
        mode: Optional[Mode] = None,
        label: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> Traced[T]:
        """Run ``attempt`` up to ``spec.retry_budget`` times, one record per try.

        ``max_attempts`` caps the budget below the spec's (never under 1).
        """
        used_mode = mode or self._mode
        budget = spec.retry_budget if max_attempts is None else max(1, min(max_attempts, spec.retry_budget))
        records = []
        last_error: Optional[BaseException] = None
        for retry_index in range(budget):
            start = perf_counter()
            try:
                result = await attempt()
                if validate is not None and not validate(result):
                    raise EmptyResponseError(f"{stage.value} response rejected by validation")
            except Exception as exc:
                last_error = exc
                records.append(self._record(stage, used_mode, spec, retry_index, start, ok=False, error=str(exc), label=label))
                log_warning(
                    self._trace_id,
                    "router:attempt_failed",
                    stage=stage.value,
                    mode=used_mode.value,
                    model=spec.model,
                    retryIndex=retry_index,
                    error=str(exc),
                )
                continue
            records.append(self._record(stage, used_mode, spec, retry_index, start, ok=True, label=label))
            log_info(
                self._trace_id,
                "router:attempt_ok",
                stage=stage.value,
                mode=used_mode.value,
                model=spec.model,
                retryIndex=retry_index,
            )
            return Traced(result, tuple(records))
        raise StageExhaustedError(stage.value, used_mode.value, last_error, records)

    async def call_json(
        self,
        stage: Stage,
        parts: Sequence[Part],
        system_instruction: str,
        schema: Dict[str, Any],
        parse: Optional[Callable[[Dict[str, Any]], T]] = None,
        *,
        mode: Optional[Mode] = None,
        label: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> Traced[Any]:
        """Structured call; ``parse`` shapes the decoded object and may reject it."""
        used_mode = mode or self._mode
        spec = self.require(stage, used_mode)

        async def attempt() -> Any:
            text = await self._backend.generate_json(
                model=spec.model,
                parts=parts,
                system_instruction=system_instruction,
                schema=schema,
                spec=spec,
            )
            data = parse_json_text(text)
            return parse(data) if parse is not None else data

        return await self.execute(stage, spec, attempt, mode=used_mode, label=label, max_attempts=max_attempts)

    async def call_text(
        self,
        stage: Stage,
        parts: Sequence[Part],
        system_instruction: str,
        *,
        mode: Optional[Mode] = None,
        label: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> Traced[str]:
        used_mode = mode or self._mode
        spec = self.require(stage, used_mode)

        async def attempt() -> str:
            text = await self._backend.generate_text(
                model=spec.model,
                parts=parts,
                system_instruction=system_instruction,
                spec=spec,
            )
            return (text or "").strip()

        return await self.execute(
            stage, spec, attempt, lambda text: bool(text), mode=used_mode, label=label, max_attempts=max_attempts
        )

    async def call_image(
        self,
        prompt: str,
        image: bytes,
        reference_images: Sequence[bytes] = (),
        *,
        mode: Optional[Mode] = None,
        label: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> Traced[bytes]:
        used_mode = mode or self._mode
        spec = self.require(Stage.IMAGE_GEN, used_mode)

        async def attempt() -> Optional[bytes]:
            return await self._backend.generate_image(
                model=spec.model,
                prompt=prompt,
                image=image,
                reference_images=list(reference_images),
                spec=spec,
            )

        return await self.execute(
            Stage.IMAGE_GEN, spec, attempt, lambda data: bool(data), mode=used_mode, label=label, max_attempts=max_attempts
        )

    @staticmethod
    def _record(
        stage: Stage,
        mode: Mode,
        spec: StageSpec,
        retry_index: int,
        start: float,
        *,
        ok: bool,
        error: Optional[str] = None,
        label: Optional[str] = None,
    ) -> TraceRecord:
        return TraceRecord(
            stage=stage,
            mode=mode,
            model=spec.model,
            temperature=spec.temperature,
            retry_index=retry_index,
            duration_ms=elapsed_ms(start),
            ok=ok,
            error=error,
            label=label,
        )


__all__ = [
    "StageSpec",
    "MODEL_MATRIX",
    "resolve_spec",
    "require_spec",
    "Traced",
    "parse_json_text",
    "ModelRouter",
]
