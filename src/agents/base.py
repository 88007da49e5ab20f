from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from src.llm.router import ModelRouter
from src.specs.common.enums import Mode


class Agent(ABC):
    """Abstract base class for pipeline stage agents.

    An agent wraps the per-invocation ``ModelRouter`` and keeps no state
    between ``run`` calls; everything it produces comes back in the
    returned ``StageResult``.
    """

    def __init__(self, router: ModelRouter) -> None:
        self.router = router

    @property
    def mode(self) -> Mode:
        return self.router.mode

    @property
    def trace_id(self) -> Optional[str]:
        return self.router.trace_id

    @abstractmethod
    async def run(self, *args: Any, **kwargs: Any) -> Any:
        """Execute the stage and return its ``StageResult``."""


__all__ = ["Agent"]
