from __future__ import annotations

from typing import Any

from execintel.apps.api.response import ErrorEnvelope


def _error_response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    example: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        example["error"]["details"] = details
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _error_response("Unauthorized", "AUTH_UNAUTHORIZED", "Missing or invalid bearer token"),
    403: _error_response("Forbidden", "AUTH_FORBIDDEN", "Insufficient role for this operation"),
    404: _error_response("Not found", "NOT_FOUND", "Report not found"),
    409: _error_response(
        "Invalid transition",
        "INVALID_TRANSITION",
        "Cannot transition report from draft to published",
        {"current": "draft", "target": "published"},
    ),
    422: _error_response("Validation error", "VALIDATION_ERROR", "Title is required", {"field": "title"}),
    500: _error_response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
    502: _error_response("Upstream failure", "UPSTREAM_FAILURE", "Failed to create digest: connection refused"),
}
