"""Shared helpers for the HTTP routers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, Request

from ..context import AppContext
from ..errors import (
    NotAuthenticatedError,
    NotFoundError,
    RemoteWriteError,
    SyncError,
    TaskflowError,
    TaskValidationError,
)


def get_context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Taskflow service not available")
    return context


def to_http_exception(exc: TaskflowError) -> HTTPException:
    """Map a service error to the HTTP status the API reports for it."""

    if isinstance(exc, NotAuthenticatedError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TaskValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, RemoteWriteError):
        return HTTPException(status_code=503 if exc.offline else 502, detail=str(exc))
    if isinstance(exc, SyncError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@contextmanager
def service_errors() -> Iterator[None]:
    """Re-raise ``TaskflowError`` from the wrapped block as ``HTTPException``."""
    try:
        yield
    except TaskflowError as exc:
        raise to_http_exception(exc) from exc


def not_found(what: str, identifier: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{what} {identifier} not found")


__all__ = ["get_context", "not_found", "service_errors", "to_http_exception"]
