"""Failure kinds raised by the data request pipeline.

Components raise these; only the web layer turns them into HTTP responses.
"""

from __future__ import annotations

from typing import Any


class DataRequestError(Exception):
    """Base class for every failure the pipeline raises."""


class NotFoundError(DataRequestError):
    """A referenced team, project, chart, dataset or data request does not exist."""

    def __init__(self, kind: str, ident: Any = None) -> None:  # noqa: ANN401
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found" if ident is None else f"{kind} {ident} not found")


class UnauthorizedError(DataRequestError):
    """Access chain mismatch or permission denial.

    ``reason`` is for server-side logs only and never reaches the client.
    """

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        super().__init__(reason or "not authorized")


class UpstreamError(DataRequestError):
    """The external data API failed, timed out or answered with an error payload."""

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None) -> None:  # noqa: ANN401
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(message if status_code is None else f"[{status_code}] {message}")


class ValidationError(DataRequestError):
    """Malformed create or update body."""

    def __init__(self, message: str, detail: Any = None) -> None:  # noqa: ANN401
        self.message = message
        self.detail = detail
        super().__init__(message)
