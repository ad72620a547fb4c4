"""Classification of outbound request failures.

Maps every failed request to one of four remedies:

- UNAUTHORIZED: the credential was rejected; clear the session once, never retry
- CONNECTIVITY: timeout, refused, unreachable, or a proxy reporting the backend
  down; hand off to the retry supervisor
- SERVER_ERROR: the origin answered 5xx; show it to the caller
- CLIENT_ERROR: the request was rejected with 4xx; show it to the caller

An expired credential and an unreachable backend need opposite remedies, so
401 is checked before anything else and is never counted as connectivity.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import requests

from heartline.errors import (
    AuthExpiredError,
    BackendUnavailableError,
    ClientError,
    ErrorCode,
    RequestFailedError,
    ServerError,
)
from heartline.reliability.models import (
    CONNECTIVITY_KINDS,
    FailureCategory,
    FailureKind,
)
from heartline.reliability.probe import connection_failure_kind

# Statuses a reverse proxy answers with when the backend behind it is down
INTERMEDIARY_STATUSES = frozenset({502, 504})


@dataclass(frozen=True)
class Classification:
    """Result of classifying one failure."""

    kind: FailureKind
    category: FailureCategory
    status_code: int | None = None
    message: str | None = None

    @property
    def is_connectivity(self) -> bool:
        return self.category is FailureCategory.CONNECTIVITY


def category_for(kind: FailureKind) -> FailureCategory:
    """Coarse category of a failure kind."""
    if kind is FailureKind.AUTH_EXPIRED:
        return FailureCategory.UNAUTHORIZED
    if kind in CONNECTIVITY_KINDS:
        return FailureCategory.CONNECTIVITY
    if kind is FailureKind.SERVER_ERROR:
        return FailureCategory.SERVER_ERROR
    return FailureCategory.CLIENT_ERROR


def _is_proxy_payload(payload: Any) -> bool:
    if not isinstance(payload, Mapping):
        return False
    return bool(payload.get("isProxyError")) or payload.get("code") == "BACKEND_UNAVAILABLE"


def _payload_message(payload: Any) -> str | None:
    if isinstance(payload, Mapping):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    return None


def classify_response(status_code: int, payload: Any = None) -> Classification:
    """Classify a non-2xx HTTP response.

    Args:
        status_code: HTTP status of the response.
        payload: Decoded JSON body, if any.
    """
    message = _payload_message(payload)

    if status_code == 401:
        kind = FailureKind.AUTH_EXPIRED
    elif status_code in INTERMEDIARY_STATUSES or _is_proxy_payload(payload):
        kind = FailureKind.INTERMEDIARY_UNAVAILABLE
    elif status_code >= 500:
        kind = FailureKind.SERVER_ERROR
    else:
        kind = FailureKind.CLIENT_ERROR

    return Classification(
        kind=kind,
        category=category_for(kind),
        status_code=status_code,
        message=message,
    )


def classify_exception(exc: BaseException) -> Classification:
    """Classify an exception raised while sending a request.

    HTTPError is classified by its response; transport errors by type.
    Errors in the request itself (bad URL or schema, redirect loops) are
    CLIENT_ERROR.
    """
    if isinstance(exc, requests.exceptions.HTTPError) and exc.response is not None:
        response = exc.response
        try:
            payload = response.json()
        except ValueError:
            payload = None
        return classify_response(response.status_code, payload)

    if isinstance(exc, (requests.exceptions.Timeout, TimeoutError)):
        kind = FailureKind.TIMEOUT
    elif isinstance(exc, (requests.exceptions.ConnectionError, ConnectionError)):
        kind = connection_failure_kind(exc)
    elif isinstance(exc, requests.exceptions.ChunkedEncodingError):
        # Connection dropped mid-body
        kind = FailureKind.NETWORK_UNREACHABLE
    elif isinstance(exc, requests.exceptions.RequestException):
        kind = FailureKind.CLIENT_ERROR
    elif isinstance(exc, OSError):
        kind = FailureKind.NETWORK_UNREACHABLE
    else:
        kind = FailureKind.CLIENT_ERROR

    return Classification(kind=kind, category=category_for(kind), message=str(exc) or None)


_KIND_CODES = {
    FailureKind.TIMEOUT: ErrorCode.TIMEOUT,
    FailureKind.CONNECTION_REFUSED: ErrorCode.CONNECTION_REFUSED,
    FailureKind.NETWORK_UNREACHABLE: ErrorCode.NETWORK_ERROR,
    FailureKind.INTERMEDIARY_UNAVAILABLE: ErrorCode.BACKEND_UNAVAILABLE,
}


def to_error(
    classification: Classification,
    *,
    method: str | None = None,
    path: str | None = None,
    cause: BaseException | None = None,
) -> RequestFailedError:
    """Build the typed exception for a classified failure."""
    common: dict[str, Any] = {
        "method": method,
        "path": path,
        "status_code": classification.status_code,
        "details": {"kind": classification.kind.value},
        "cause": cause,
    }
    category = classification.category

    if category is FailureCategory.UNAUTHORIZED:
        return AuthExpiredError(**common)
    if category is FailureCategory.CONNECTIVITY:
        return BackendUnavailableError(code=_KIND_CODES.get(classification.kind), **common)
    if category is FailureCategory.SERVER_ERROR:
        return ServerError(classification.message, **common)
    return ClientError(classification.message, **common)
