"""
Three-tier fallback shared by every stage.

retry in the active mode -> one retry in ``fast`` when the active mode is
``quality`` -> deterministic, network-free default. Only
``StageExhaustedError`` is absorbed; anything else (a stage with no spec,
a bug) propagates to the caller.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Literal, Optional, Tuple, TypeVar

from src.llm.router import Traced
from src.shared.logging_utils import warning as log_warning
from src.specs.common.enums import Mode
from src.specs.common.errors import StageExhaustedError
from src.specs.common.trace import TraceRecord

T = TypeVar("T")

Tier = Literal["primary", "cross_mode", "default"]

# attempts allowed on the fast-mode tier
CROSS_MODE_ATTEMPTS = 1


@dataclass(frozen=True)
class StageResult(Generic[T]):
    value: T
    records: Tuple[TraceRecord, ...] = ()
    tier: Tier = "primary"

    @property
    def degraded(self) -> bool:
        return self.tier != "primary"


async def resilient_call(
    stage_name: str,
    mode: Mode,
    primary: Callable[[], Awaitable[Traced[T]]],
    default: Callable[[], T],
    *,
    cross_mode: Optional[Callable[[], Awaitable[Traced[T]]]] = None,
    trace_id: Optional[str] = None,
) -> StageResult[T]:
    """Run ``primary`` and fall back through the cascade on exhaustion.

    ``cross_mode`` is the same call issued under ``fast`` with
    ``max_attempts=CROSS_MODE_ATTEMPTS``; it is only tried when ``mode`` is
    ``quality``. Failed attempts from every tier stay in
    the returned records.
    """
    records: Tuple[TraceRecord, ...] = ()
    try:
        traced = await primary()
        return StageResult(traced.value, traced.records, "primary")
    except StageExhaustedError as exc:
        records += exc.records
        log_warning(trace_id, "pipeline:stage_exhausted", stage=stage_name, mode=mode.value, error=str(exc.last_error))

    if mode == Mode.QUALITY and cross_mode is not None:
        try:
            traced = await cross_mode()
            return StageResult(traced.value, records + traced.records, "cross_mode")
        except StageExhaustedError as exc:
            records += exc.records
            log_warning(trace_id, "pipeline:cross_mode_exhausted", stage=stage_name, error=str(exc.last_error))

    log_warning(trace_id, "pipeline:stage_degraded", stage=stage_name, mode=mode.value)
    return StageResult(default(), records, "default")


__all__ = ["CROSS_MODE_ATTEMPTS", "StageResult", "resilient_call"]
