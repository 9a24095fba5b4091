"""Error taxonomy for Superset API calls.

Every failure the client can produce maps onto one class here, so the MCP
layer can pick hints by type instead of by string matching.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

_TITLE_RE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)

RAW_BODY_LIMIT = 500


class SupersetError(Exception):
    """Base class for every error raised by superset_py."""


class AuthenticationError(SupersetError):
    """Login failed, credentials are missing, or no token came back."""


class CsrfFetchError(SupersetError):
    """Login succeeded but the CSRF token could not be obtained."""


class TransportError(SupersetError):
    """No HTTP response was received (connection refused, timeout, DNS)."""


class UpstreamHttpError(SupersetError):
    """Superset answered with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        reason: str,
        message: str,
        payload: Any = None,
    ) -> None:
        self.status_code = status_code
        self.reason = reason
        self.message = message
        self.payload = payload
        super().__init__(f"{status_code} {reason}: {message}")


class ParseError(SupersetError, ValueError):
    """A JSON-string field (params, query_context, json_metadata) is malformed."""

    def __init__(self, field: str, detail: str) -> None:
        self.field = field
        self.detail = detail
        super().__init__(f"Could not parse {field}: {detail}")


class ResourceError(SupersetError):
    """A resource operation failed; wraps the underlying cause with context."""

    def __init__(self, operation: str, cause: Exception) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation}: {cause}")

    @property
    def status_code(self) -> int | None:
        if isinstance(self.cause, UpstreamHttpError):
            return self.cause.status_code
        return None


class SqlExecutionError(ResourceError):
    """SQL Lab rejected a query; ``report`` carries the full diagnostic text."""

    def __init__(self, cause: Exception, report: str) -> None:
        super().__init__("execute SQL", cause)
        self.report = report

    def __str__(self) -> str:
        return self.report


# ---------------------------------------------------------------------------
# Response -> message extraction
# ---------------------------------------------------------------------------


def _body_of(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or ""


def describe_body(body: Any, content_type: str = "") -> str:
    """Pick the most useful human-readable message out of an error body."""
    if isinstance(body, str) and (
        "text/html" in content_type or body.lstrip().lower().startswith(("<!doctype", "<html"))
    ):
        match = _TITLE_RE.search(body)
        if match and match.group(1).strip():
            return match.group(1).strip()
        return "Server returned HTML response (possibly an error page)"

    if isinstance(body, dict):
        message = body.get("message")
        if message:
            if isinstance(message, (dict, list)):
                return json.dumps(message)
            return str(message)
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            parts = []
            for err in errors:
                if isinstance(err, dict):
                    parts.append(str(err.get("message") or json.dumps(err)))
                else:
                    parts.append(str(err))
            return ", ".join(parts)
        return json.dumps(body)

    if isinstance(body, list):
        return json.dumps(body)

    text = str(body or "")
    if len(text) > RAW_BODY_LIMIT:
        return text[:RAW_BODY_LIMIT] + "..."
    return text or "No response body"


def error_from_response(response: Any) -> UpstreamHttpError:
    """Build an :class:`UpstreamHttpError` from a ``requests.Response``."""
    body = _body_of(response)
    content_type = ""
    headers = getattr(response, "headers", None) or {}
    if headers:
        content_type = str(headers.get("Content-Type", ""))
    return UpstreamHttpError(
        status_code=response.status_code,
        reason=getattr(response, "reason", "") or "",
        message=describe_body(body, content_type),
        payload=body,
    )


def format_sql_error(
    exc: Exception,
    sql: str | None = None,
    database_id: int | None = None,
) -> str:
    """Render a multi-line SQL Lab failure report.

    Includes the query, the database, the HTTP status and any Superset
    issue codes or per-error details carried in the response body.
    """
    lines = ["SQL Execution Error"]
    if sql:
        lines += ["SQL Query:", sql, ""]
    if database_id:
        lines += [f"Database ID: {database_id}", ""]

    if not isinstance(exc, UpstreamHttpError):
        lines.append(f"Basic Error: {exc}")
        return "\n".join(lines)

    lines.append(f"HTTP Status: {exc.status_code} {exc.reason}")
    body = exc.payload
    if not isinstance(body, dict):
        lines.append(f"Response Data: {body}")
        return "\n".join(lines)

    for key, label in (
        ("message", "Error Message"),
        ("error_type", "Error Type"),
        ("level", "Error Level"),
    ):
        if body.get(key):
            lines.append(f"{label}: {body[key]}")

    extra = body.get("extra")
    issue_codes = extra.get("issue_codes") if isinstance(extra, dict) else None
    if isinstance(issue_codes, list) and issue_codes:
        lines += ["", "Issue Codes:"]
        for i, issue in enumerate(issue_codes, 1):
            if isinstance(issue, dict):
                lines.append(f"  {i}. Code {issue.get('code')}: {issue.get('message')}")

    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        lines += ["", "Detailed Errors:"]
        for i, err in enumerate(errors, 1):
            if isinstance(err, str):
                lines.append(f"  {i}. {err}")
            elif isinstance(err, dict) and err.get("message"):
                lines.append(f"  {i}. {err['message']}")
                if err.get("error_type"):
                    lines.append(f"     Type: {err['error_type']}")
                if err.get("level"):
                    lines.append(f"     Level: {err['level']}")
            else:
                lines.append(f"  {i}. {json.dumps(err)}")

    if body.get("description"):
        lines += ["", f"Description: {body['description']}"]
    return "\n".join(lines)


@contextmanager
def wrap_errors(operation: str) -> Iterator[None]:
    """Re-raise client failures as :class:`ResourceError` naming *operation*.

    Errors already carrying context (``ResourceError``, ``ParseError``)
    and plain ``ValueError`` validation failures pass through unchanged.
    """
    try:
        yield
    except (ResourceError, ParseError):
        raise
    except SupersetError as exc:
        raise ResourceError(operation, exc) from exc
