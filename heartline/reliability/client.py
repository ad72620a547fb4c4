"""API client that routes request failures to the right remedy.

Wraps a requests session. Every failure is classified once:

- connectivity failures start the retry supervisor and raise BackendUnavailableError
- 401 clears the cached session (once) and raises AuthExpiredError
- 5xx / 4xx from the origin raise ServerError / ClientError for the caller to show

A successful request while the supervisor believes the backend is down is
taken as proof of recovery and resets the supervisor.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import requests

from heartline.errors import RequestFailedError
from heartline.reliability.classifier import (
    Classification,
    classify_exception,
    classify_response,
    to_error,
)
from heartline.reliability.models import AvailabilityState, FailureCategory
from heartline.reliability.supervisor import RetrySupervisor
from heartline.utils.async_utils import run_in_thread, spawn

if TYPE_CHECKING:
    from heartline.session import SessionStore

logger = logging.getLogger(__name__)

AuthExpiredHook = Callable[[], None]


class ApiClient:
    """Async facade over a requests session for the backend API.

    Example:
        >>> client = ApiClient("http://localhost:5000/api", supervisor, store)
        >>> documents = await client.get("/documents")
        >>> await client.post("/quizzes", json={"documentId": "42"})
    """

    DEFAULT_TIMEOUT = 30.0  # seconds
    USER_AGENT = "Heartline-ApiClient/1.0"

    def __init__(
        self,
        base_url: str,
        supervisor: RetrySupervisor,
        session_store: SessionStore,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        on_auth_expired: AuthExpiredHook | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL for all requests.
            supervisor: Retry supervisor to hand connectivity failures to.
            session_store: Source of the bearer token; cleared on 401.
            timeout: Request timeout in seconds.
            session: Optional requests session to use.
            on_auth_expired: Called once when a 401 clears a cached session
                (e.g. to redirect to the login view).
        """
        self._base_url = base_url.rstrip("/")
        self._supervisor = supervisor
        self._store = session_store
        self._timeout = timeout
        self._owns_session = session is None
        self._session = session or self._create_session()
        self._on_auth_expired = on_auth_expired

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "User-Agent": self.USER_AGENT,
                "Accept": "application/json",
            }
        )
        return session

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        headers = dict(extra or {})
        token = self._store.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return self._session.request(method=method, url=url, timeout=self._timeout, **kwargs)

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Send a request and return the decoded body.

        Args:
            method: HTTP method.
            path: Path appended to the base URL.
            headers: Extra headers.
            **kwargs: Passed through to ``requests`` (json, params, files, ...).

        Returns:
            Parsed JSON for JSON responses, text otherwise.

        Raises:
            AuthExpiredError: The credential was rejected.
            BackendUnavailableError: The backend could not be reached.
            ServerError: The origin answered 5xx.
            ClientError: The request was rejected with 4xx.
        """
        method = method.upper()
        url = f"{self._base_url}/{path.lstrip('/')}"
        logger.debug(f"API request: {method} {path}")

        try:
            response = await run_in_thread(
                self._send, method, url, headers=self._headers(headers), **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise self._handle_failure(classify_exception(e), method, path, e) from e

        if response.status_code >= 400:
            payload = self._decode(response, strict=False)
            raise self._handle_failure(
                classify_response(response.status_code, payload), method, path, None
            )

        logger.debug(f"API response: {response.status_code} {path}")
        self._confirm_available()
        return self._decode(response)

    @staticmethod
    def _decode(response: requests.Response, strict: bool = True) -> Any:
        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                if strict:
                    logger.warning("Response declared JSON but could not be decoded")
                return response.text
        return response.text if strict else None

    def _confirm_available(self) -> None:
        if self._supervisor.state is not AvailabilityState.AVAILABLE:
            logger.info(f"Request succeeded while backend marked {self._supervisor.state.value}")
            self._supervisor.reset(source="request")

    def _handle_failure(
        self,
        classification: Classification,
        method: str,
        path: str,
        cause: BaseException | None,
    ) -> RequestFailedError:
        category = classification.category

        if category is FailureCategory.UNAUTHORIZED:
            if self._store.clear():
                logger.warning("Token expired or invalid - cleared cached session")
                if self._on_auth_expired is not None:
                    try:
                        self._on_auth_expired()
                    except Exception:
                        logger.exception("Auth-expired hook failed")
        elif category is FailureCategory.CONNECTIVITY:
            logger.error(f"Cannot reach backend ({classification.kind.value}) on {method} {path}")
            if not self._supervisor.is_running:
                spawn(self._supervisor.start(), "Availability supervision failed", logger)
        else:
            if classification.status_code is None:
                logger.error(f"{method} {path} failed: {classification.message}")
            else:
                logger.error(f"{method} {path} failed with HTTP {classification.status_code}")

        return to_error(classification, method=method, path=path, cause=cause)

    async def get(self, path: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(
        self,
        path: str,
        json: Any = None,
        data: Any = None,
        **kwargs: Any,
    ) -> Any:
        return await self.request("POST", path, json=json, data=data, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)

    def close(self) -> None:
        """Close the underlying session if this client created it."""
        if self._owns_session:
            self._session.close()
