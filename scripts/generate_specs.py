#!/usr/bin/env python3
"""
Generate JSON Schemas, YAML variants, and OpenAPI from Pydantic models.

Outputs under src/specs/:
 - schemas/*.json (and *.yaml)
 - openapi.yaml and openapi.json
"""
from __future__ import annotations

import json
import sys
from pathlib import Path

import yaml  # type: ignore


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
SPECS = SRC / "specs"
SCHEMAS_DIR = SPECS / "schemas"

sys.path.insert(0, str(ROOT))

from src.specs.agents.outputs import DirectorOut, FastGuardrailOut, ImageQAOut  # noqa: E402
from src.specs.http.generate_post import (  # noqa: E402
    ErrorResponse,
    GeneratePostRequest,
    GeneratePostResponse,
)
from src.specs.http.trace_status import TraceStatusResponse  # noqa: E402
from src.specs.models import SCHEMA_MODELS  # noqa: E402


HTTP_MODELS = {
    "generate_post.request.schema.json": GeneratePostRequest,
    "generate_post.response.schema.json": GeneratePostResponse,
    "trace_status.response.schema.json": TraceStatusResponse,
    "error.response.schema.json": ErrorResponse,
}

AGENT_OUTPUT_MODELS = {
    "director.output.schema.json": DirectorOut,
    "fast_guardrail.output.schema.json": FastGuardrailOut,
    "image_qa.output.schema.json": ImageQAOut,
}


def write_json_yaml(obj: dict, json_path: Path) -> None:
    json_path.parent.mkdir(parents=True, exist_ok=True)
    with json_path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
    yaml_path = json_path.with_suffix(".yaml")
    with yaml_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(obj, f, sort_keys=False)


def generate_model_schemas() -> None:
    for filename, model in {**SCHEMA_MODELS, **HTTP_MODELS, **AGENT_OUTPUT_MODELS}.items():
        schema = model.model_json_schema(by_alias=True)
        write_json_yaml(schema, SCHEMAS_DIR / filename)


def _json_response(description: str, ref: str) -> dict:
    return {
        "description": description,
        "content": {"application/json": {"schema": {"$ref": f"#/components/schemas/{ref}"}}},
    }


def build_openapi() -> dict:
    # Inline the model schemas as OpenAPI components
    components = {
        "schemas": {
            "GeneratePostRequest": GeneratePostRequest.model_json_schema(),
            "GeneratePostResponse": GeneratePostResponse.model_json_schema(),
            "TraceStatusResponse": TraceStatusResponse.model_json_schema(),
            "ErrorResponse": ErrorResponse.model_json_schema(),
        }
    }

    spec = {
        "openapi": "3.0.3",
        "info": {
            "title": "AmplifyMe Functions API",
            "version": "0.1.0",
            "description": "HTTP endpoints exposed by the AmplifyMe Azure Functions app.",
        },
        "servers": [
            {"url": "http://localhost:7071/api", "description": "Local Functions host"}
        ],
        "paths": {
            "/generate_post": {
                "post": {
                    "summary": "Create or refine a social post from photos and a note",
                    "operationId": "generatePost",
                    "requestBody": {
                        "required": True,
                        "content": {
                            "application/json": {
                                "schema": {"$ref": "#/components/schemas/GeneratePostRequest"}
                            }
                        },
                    },
                    "responses": {
                        "200": _json_response("Pipeline finished; degraded stages are listed in debugInfo", "GeneratePostResponse"),
                        "400": _json_response("Invalid body, undecodable image, or refine without traceId", "ErrorResponse"),
                        "500": _json_response("Backend or model matrix misconfigured", "ErrorResponse"),
                    },
                }
            },
            "/trace_status": {
                "get": {
                    "summary": "Archived trace records for a trace id",
                    "operationId": "getTraceStatus",
                    "parameters": [
                        {
                            "in": "query",
                            "name": "traceId",
                            "schema": {"type": "string"},
                            "required": True,
                        },
                    ],
                    "responses": {
                        "200": _json_response("Archived runs, oldest first", "TraceStatusResponse"),
                        "400": _json_response("Missing traceId", "ErrorResponse"),
                        "404": _json_response("No runs archived for the trace id", "ErrorResponse"),
                        "503": _json_response("Trace archive not configured", "ErrorResponse"),
                    },
                }
            },
        },
        "components": components,
    }
    return spec


def generate_openapi() -> None:
    spec = build_openapi()
    write_json_yaml(spec, SPECS / "openapi.json")


def main() -> None:
    generate_model_schemas()
    generate_openapi()
    print("Specs generated under src/specs/")


if __name__ == "__main__":
    main()
