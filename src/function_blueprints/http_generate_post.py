from functools import lru_cache
from time import perf_counter
from typing import Any, Dict, Optional

import azure.functions as func
from pydantic import ValidationError

from src.llm.azure_openai import AzureOpenAIBackend
from src.pipeline.orchestrator import run_orchestrator
from src.shared.logging_utils import elapsed_ms, info as log_info, error as log_error
from src.shared.trace_store import archive_run
from src.specs.common.errors import ConfigurationError, InvalidImageError, RefineWithoutTraceError
from src.specs.http.generate_post import ErrorResponse, GeneratePostRequest, GeneratePostResponse


bp = func.Blueprint()


@lru_cache(maxsize=1)
def get_backend() -> AzureOpenAIBackend:
    return AzureOpenAIBackend()


def _error(status: int, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> func.HttpResponse:
    err = ErrorResponse(message=message, errorCode=code, details=details)
    return func.HttpResponse(body=err.model_dump_json(), mimetype="application/json", status_code=status)


@bp.function_name(name="generate_post")
@bp.route(route="generate_post", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
async def generate_post(req: func.HttpRequest) -> func.HttpResponse:
    start = perf_counter()
    try:
        data = req.get_json()
    except ValueError:
        log_error(None, "generate:invalid_json")
        return _error(400, "Invalid JSON body")

    try:
        parsed = GeneratePostRequest(**data)
    except (TypeError, ValidationError) as ex:
        log_error(None, "generate:invalid_request", error=str(ex))
        return _error(400, f"Invalid request: {str(ex)}")

    try:
        request = parsed.to_domain()
    except InvalidImageError as ex:
        log_error(parsed.traceId, "generate:invalid_image", error=str(ex))
        return _error(400, str(ex), ex.code, ex.details)

    try:
        result = await run_orchestrator(request, get_backend())
    except RefineWithoutTraceError as ex:
        log_error(None, "generate:missing_trace_id", variantId=parsed.variant_id)
        return _error(400, str(ex), ex.code, ex.details)
    except ConfigurationError as ex:
        log_error(parsed.traceId, "generate:configuration_error", error=str(ex), code=ex.code)
        return _error(500, str(ex), ex.code, ex.details)

    archive_run(result, request.action.value)
    resp = GeneratePostResponse.from_result(result)
    log_info(
        result.trace_id,
        "generate:completed",
        action=request.action.value,
        durationMs=elapsed_ms(start),
        degraded=len(result.debug.degraded_stages),
    )
    return func.HttpResponse(body=resp.model_dump_json(), mimetype="application/json", status_code=200)
