"""Structured log helpers; dimensions land in Application Insights ``custom_dimensions``."""
import logging
from time import perf_counter
from typing import Any, Dict, Optional


_LOGGER = logging.getLogger("amplifyme")


def elapsed_ms(start: float) -> int:
    """Milliseconds since a ``perf_counter()`` reading."""
    return int((perf_counter() - start) * 1000)


def _dimensions(trace_id: Optional[str], dimensions: Dict[str, Any]) -> Dict[str, Any]:
    dims: Dict[str, Any] = {"traceId": trace_id} if trace_id else {}
    dims.update({key: value for key, value in dimensions.items() if value is not None})
    return dims


def log(level: int, trace_id: Optional[str], message: str, exc_info: bool = False, **dimensions: Any) -> None:
    dims = _dimensions(trace_id, dimensions)
    try:
        _LOGGER.log(level, message, exc_info=exc_info, extra={"custom_dimensions": dims})
    except Exception:
        # Fallback if extra/custom_dimensions not supported in the environment
        _LOGGER.log(level, f"{message} | {dims}", exc_info=exc_info)


def info(trace_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.INFO, trace_id, message, **dimensions)


def warning(trace_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.WARNING, trace_id, message, **dimensions)


def error(trace_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.ERROR, trace_id, message, **dimensions)


def exception(trace_id: Optional[str], message: str, **dimensions: Any) -> None:
    """Error with the active traceback attached."""
    log(logging.ERROR, trace_id, message, exc_info=True, **dimensions)
