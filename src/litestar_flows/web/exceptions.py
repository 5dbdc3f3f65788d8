"""Exception handling for flow web endpoints.

This module maps the library's exceptions onto HTTP responses:
- missing flows, executions and contacts: 404
- invalid graphs and node configs: 422 with every error
- invalid transitions and storage conflicts: 409
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from litestar import Response
from litestar.status_codes import HTTP_404_NOT_FOUND, HTTP_409_CONFLICT, HTTP_422_UNPROCESSABLE_ENTITY

from litestar_flows.exceptions import (
    ConfigInvalidError,
    ContactNotFoundError,
    ExecutionNotFoundError,
    FlowNotFoundError,
    FlowsError,
    GraphInvalidError,
    InvalidTransitionError,
    StorageConflictError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

__all__ = [
    "EXCEPTION_HANDLERS",
    "conflict_handler",
    "invalid_flow_handler",
    "not_found_handler",
]


def _error_response(exc: FlowsError, status_code: int, **extra: Any) -> Response:
    return Response(
        content={"error": exc.kind, "message": str(exc), **extra},
        status_code=status_code,
        media_type="application/json",
    )


def not_found_handler(_request: Request, exc: FlowsError) -> Response:
    """Exception handler for missing flows, executions and contacts.

    Returns:
        A 404 response naming the error kind.
    """
    return _error_response(exc, HTTP_404_NOT_FOUND)


def invalid_flow_handler(_request: Request, exc: GraphInvalidError | ConfigInvalidError) -> Response:
    """Exception handler for validation failures.

    Returns:
        A 422 response listing every error so the editor can show them all at once.
    """
    errors = exc.as_list() if isinstance(exc, ConfigInvalidError) else exc.errors
    return _error_response(exc, HTTP_422_UNPROCESSABLE_ENTITY, errors=errors)


def conflict_handler(_request: Request, exc: FlowsError) -> Response:
    return _error_response(exc, HTTP_409_CONFLICT)


EXCEPTION_HANDLERS = {
    FlowNotFoundError: not_found_handler,
    ExecutionNotFoundError: not_found_handler,
    ContactNotFoundError: not_found_handler,
    GraphInvalidError: invalid_flow_handler,
    ConfigInvalidError: invalid_flow_handler,
    InvalidTransitionError: conflict_handler,
    StorageConflictError: conflict_handler,
}
"""Handlers registered by the plugin when the API is enabled."""
