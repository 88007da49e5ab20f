"""Cosmos archive of per-run trace records, keyed by trace id.

Archiving is optional: when the Cosmos settings are missing the store is
disabled and the pipeline runs unchanged.
"""
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import backoff
from azure.cosmos import CosmosClient, exceptions
from azure.cosmos.container import ContainerProxy

from src.shared.logging_utils import exception as log_exception, info as log_info
from src.specs.models.domain import OrchestratorResponse


class RetryableCosmosError(Exception):
    """Throttled or unavailable Cosmos operation"""
    pass


def _retryable(exc: exceptions.CosmosHttpResponseError) -> Exception:
    if exc.status_code in (429, 503):
        return RetryableCosmosError(str(exc))
    return exc


@lru_cache(maxsize=4)
def _open_container(conn: str, db_name: str, container_name: str) -> ContainerProxy:
    client = CosmosClient.from_connection_string(conn, retry_total=3)
    return client.get_database_client(db_name).get_container_client(container_name)


def get_trace_container() -> Optional[ContainerProxy]:
    """Return the traces container, or None if archiving is not configured.

    Settings are read on every call; only an opened container is cached.
    """
    conn = os.getenv("COSMOS_DB_CONNECTION_STRING")
    db_name = os.getenv("COSMOS_DB_NAME")
    container_name = os.getenv("COSMOS_DB_CONTAINER_TRACES")
    if not conn or not db_name or not container_name:
        return None
    return _open_container(conn, db_name, container_name)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_run_document(result: OrchestratorResponse, action: str) -> Dict[str, Any]:
    records = [r.model_dump(mode="json") for r in result.debug.llm_trace]
    archived_at = _utcnow()
    return {
        "id": f"{result.trace_id}:{archived_at}",
        "traceId": result.trace_id,
        "action": action,
        "mode": result.debug.mode.value,
        "archivedAtUtc": archived_at,
        "attempts": len(records),
        "failedAttempts": sum(1 for r in records if not r["ok"]),
        "degradedStages": list(result.debug.degraded_stages),
        "records": records,
    }


@backoff.on_exception(backoff.expo, RetryableCosmosError, max_tries=3, max_time=10)
def _upsert(container: ContainerProxy, doc: Dict[str, Any]) -> None:
    try:
        container.upsert_item(body=doc)
    except exceptions.CosmosHttpResponseError as exc:
        raise _retryable(exc) from exc


def archive_run(result: OrchestratorResponse, action: str) -> bool:
    """Best-effort write of one run; failures are logged, never raised."""
    container = get_trace_container()
    if container is None:
        return False
    doc = build_run_document(result, action)
    try:
        _upsert(container, doc)
    except Exception as exc:
        log_exception(result.trace_id, "trace_store:archive_failed", error=str(exc))
        return False
    log_info(result.trace_id, "trace_store:archived", attempts=doc["attempts"], action=action)
    return True


@backoff.on_exception(backoff.expo, RetryableCosmosError, max_tries=3, max_time=10)
def load_runs(container: ContainerProxy, trace_id: str) -> List[Dict[str, Any]]:
    """All archived runs for ``trace_id``, oldest first."""
    try:
        return list(
            container.query_items(
                query="SELECT * FROM c WHERE c.traceId = @traceId ORDER BY c.archivedAtUtc ASC",
                parameters=[{"name": "@traceId", "value": trace_id}],
                enable_cross_partition_query=True,
            )
        )
    except exceptions.CosmosHttpResponseError as exc:
        raise _retryable(exc) from exc
