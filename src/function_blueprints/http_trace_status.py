import azure.functions as func

from src.shared.logging_utils import info as log_info, error as log_error
from src.shared.trace_store import get_trace_container, load_runs
from src.specs.http.generate_post import ErrorResponse
from src.specs.http.trace_status import ArchivedRun, TraceStatusResponse


bp = func.Blueprint()


@bp.function_name(name="trace_status")
@bp.route(route="trace_status", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def trace_status(req: func.HttpRequest) -> func.HttpResponse:
    trace_id = req.params.get("traceId")
    log_info(trace_id, "trace_status:request")

    if not trace_id:
        log_error(None, "trace_status:missing_traceId")
        err = ErrorResponse(message="Missing traceId", errorCode="MISSING_TRACE_ID")
        return func.HttpResponse(body=err.model_dump_json(), mimetype="application/json", status_code=400)

    container = get_trace_container()
    if container is None:
        err = ErrorResponse(message="Trace archive is not configured", errorCode="ARCHIVE_DISABLED")
        return func.HttpResponse(body=err.model_dump_json(), mimetype="application/json", status_code=503)

    runs = [ArchivedRun(**doc) for doc in load_runs(container, trace_id)]
    if not runs:
        log_info(trace_id, "trace_status:not_found")
        err = ErrorResponse(message=f"No runs archived for {trace_id}", errorCode="NOT_FOUND")
        return func.HttpResponse(body=err.model_dump_json(), mimetype="application/json", status_code=404)

    log_info(trace_id, "trace_status:found", runs=len(runs))
    resp = TraceStatusResponse(traceId=trace_id, runs=runs, lastUpdateUtc=runs[-1].archivedAtUtc)
    return func.HttpResponse(body=resp.model_dump_json(), mimetype="application/json", status_code=200)
