import uuid
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from kit_delivery.domain.errors import DomainError

PROBLEM_TYPE_VALIDATION = "https://example.com/problems/validation-error"
PROBLEM_TYPE_DOMAIN = "https://example.com/problems/domain-error"
PROBLEM_TYPE_NOT_FOUND = "https://example.com/problems/not-found"
PROBLEM_TYPE_CONFLICT = "https://example.com/problems/conflict"
PROBLEM_TYPE_RATE_LIMIT = "https://example.com/problems/rate-limit"
PROBLEM_TYPE_SERVER = "https://example.com/problems/server-error"

_DEFAULT_TYPES = {
    404: PROBLEM_TYPE_NOT_FOUND,
    409: PROBLEM_TYPE_CONFLICT,
    422: PROBLEM_TYPE_VALIDATION,
    429: PROBLEM_TYPE_RATE_LIMIT,
}


def resolve_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


def _resolve_title(status_code: int, fallback: str | None) -> str:
    if fallback:
        return fallback
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _resolve_type(status_code: int, type_override: str | None) -> str:
    if type_override:
        return type_override
    if status_code >= 500:
        return PROBLEM_TYPE_SERVER
    return _DEFAULT_TYPES.get(status_code, PROBLEM_TYPE_DOMAIN)


def problem_details(
    request: Request,
    *,
    status: int,
    title: str | None,
    detail: str,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = resolve_request_id(request)
    content = {
        "type": _resolve_type(status, type_),
        "title": _resolve_title(status, title),
        "status": status,
        "detail": detail,
        "request_id": request_id,
        "errors": errors or [],
    }
    response = JSONResponse(
        status_code=status,
        content=content,
        headers=headers,
        media_type="application/problem+json",
    )
    response.headers.setdefault("X-Request-ID", request_id)
    return response


def domain_problem(request: Request, exc: DomainError) -> JSONResponse:
    return problem_details(
        request,
        status=exc.status,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
        type_=exc.type,
    )
