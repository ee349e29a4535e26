"""
GraphQL transport for the platform control plane.

This module sends GraphQL documents to the control plane and decodes the
responses. It handles service account authentication, the ``{data}`` /
``{errors}`` envelope, and the mapping of HTTP failures to typed errors.
It knows nothing about accounts or features; the typed operations live in
``cloudonboard.control_plane``.

Wire Format:
    POST {base_url}/api/graphql
    {"query": "...", "variables": {...}, "operationName": "..."}

    200 {"data": {...}}                                   -> data returned
    200 {"data": null, "errors": [{"message": "...",
         "extensions": {"code": 403}}]}                   -> GraphQLError
    non-200 or non-JSON                                   -> TransportError

Authentication Flow:
    1. Exchange client_id and client_secret at /api/client_token
    2. Use Bearer token for all subsequent requests
    3. On a 401 response, re-authenticate once and resend the request

Usage:
    from cloudonboard.graphql_client import GraphQLClient

    client = GraphQLClient(
        base_url="https://acme.my.example.com",
        client_id="client|abc",
        client_secret="...",
    )
    data = client.request(ACCOUNTS_QUERY, {"feature": "ALL"})
"""

import re
from typing import Any, ClassVar, cast

import requests

from cloudonboard import __version__
from cloudonboard.config import Settings
from cloudonboard.errors import GraphQLError, TransportError
from cloudonboard.logging_config import get_logger, log_with_context

logger = get_logger(__name__)

_OPERATION_NAME = re.compile(r"^\s*(?:query|mutation)\s+([_A-Za-z][_0-9A-Za-z]*)")


def operation_name(query: str) -> str | None:
    """
    Extract the operation name from a GraphQL document.

    Example:
        >>> operation_name("query CloudAccounts($feature: Feature!) { ... }")
        'CloudAccounts'
    """
    match = _OPERATION_NAME.match(query)
    return match.group(1) if match else None


class GraphQLClient:
    """
    Client for the control plane GraphQL endpoint.

    Maintains a persistent HTTP session for connection pooling. The
    session is only written during authentication; a single client can be
    shared by sagas running on different threads.

    Attributes:
        base_url: Control plane base URL
        session: Persistent HTTP session
        timeout: HTTP timeout in seconds
    """

    GRAPHQL_ENDPOINT: ClassVar[str] = "/api/graphql"
    TOKEN_ENDPOINT: ClassVar[str] = "/api/client_token"

    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the GraphQL client.

        Supports two authentication modes:
        1. Static access token
        2. Service account client credentials (token refreshed on 401)

        Args:
            base_url: Control plane base URL
            access_token: Pre-issued bearer token
            client_id: Service account client id
            client_secret: Service account client secret
            timeout: HTTP timeout in seconds

        Raises:
            TransportError: If authentication fails or no credentials are given
        """
        self.base_url: str = base_url.rstrip("/")
        self.timeout: float = timeout
        self.session: requests.Session = requests.Session()
        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": f"CloudOnboard/{__version__}",
            }
        )

        self._client_id: str | None = client_id
        self._client_secret: str | None = client_secret

        if access_token:
            self.session.headers["Authorization"] = f"Bearer {access_token}"
            log_with_context(
                logger,
                "info",
                "Initialized GraphQL client with access token",
                base_url=self.base_url,
            )
        elif client_id and client_secret:
            self._authenticate()
        else:
            raise TransportError(
                "Must provide either access_token or both client_id and client_secret",
                retryable=False,
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraphQLClient":
        """Create a client from the configured URL and credentials."""
        return cls(
            base_url=settings.base_url,
            access_token=settings.access_token,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            timeout=settings.request_timeout_seconds,
        )

    def _authenticate(self) -> None:
        """
        Exchange the service account credentials for a bearer token.

        Raises:
            TransportError: If the token request fails or returns no token
        """
        try:
            response = self.session.post(
                f"{self.base_url}{self.TOKEN_ENDPOINT}",
                json={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            token_data: dict[str, Any] = cast(dict[str, Any], response.json())
        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            raise TransportError(
                f"Service account authentication failed: {e}",
                status_code=status_code,
                response_body=e.response.text if e.response is not None else None,
                retryable=False,
            ) from e
        except requests.RequestException as e:
            raise TransportError(
                f"Service account authentication request failed: {e}",
                retryable=True,
            ) from e
        except ValueError as e:
            raise TransportError(
                f"Service account authentication returned invalid JSON: {e}",
                retryable=False,
            ) from e

        access_token: str | None = token_data.get("access_token")
        if not access_token:
            raise TransportError(
                "No access token in authentication response",
                retryable=False,
            )
        if token_data.get("client_id", self._client_id) != self._client_id:
            raise TransportError(
                "Authentication response is for a different client id",
                retryable=False,
            )

        self.session.headers["Authorization"] = f"Bearer {access_token}"
        log_with_context(
            logger,
            "info",
            "Authenticated with control plane",
            base_url=self.base_url,
        )

    def request(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Send a GraphQL document and return its ``data`` object.

        Args:
            query: GraphQL query or mutation
            variables: Variables for the document

        Returns:
            The ``data`` member of the response

        Raises:
            GraphQLError: If the response carries an ``errors`` list
            TransportError: On network errors, non-200 status or a body
                that is not a JSON object
        """
        name = operation_name(query)
        payload: dict[str, Any] = {
            "query": query,
            "variables": variables or {},
            "operationName": name,
        }

        reauthenticated = False
        while True:
            try:
                response = self.session.post(
                    f"{self.base_url}{self.GRAPHQL_ENDPOINT}",
                    json=payload,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                log_with_context(
                    logger,
                    "error",
                    "GraphQL network error",
                    operation=name,
                    error=str(e),
                )
                raise TransportError(
                    f"GraphQL network error in {name}: {e}",
                    retryable=True,
                ) from e

            if response.status_code == 401 and self._client_id and self._client_secret and not reauthenticated:
                log_with_context(
                    logger,
                    "warning",
                    "Received 401, attempting re-authentication",
                    operation=name,
                )
                self._authenticate()
                reauthenticated = True
                continue
            break

        try:
            body: object = response.json()
        except ValueError as e:
            raise TransportError(
                f"GraphQL response for {name} is not JSON (status {response.status_code})",
                status_code=response.status_code,
                response_body=response.text,
                retryable=response.status_code >= 500,
            ) from e

        if isinstance(body, dict) and body.get("errors"):
            raise self._graphql_error(name, cast(list[dict[str, Any]], body["errors"]))

        if response.status_code != 200:
            log_with_context(
                logger,
                "error",
                "GraphQL request failed",
                operation=name,
                status_code=response.status_code,
                response_body=response.text[:500],
            )
            raise TransportError(
                f"GraphQL request {name} failed with status {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
            raise TransportError(
                f"GraphQL response for {name} has no data object",
                status_code=response.status_code,
                response_body=response.text,
                retryable=False,
            )

        return cast(dict[str, Any], body["data"])

    @staticmethod
    def _graphql_error(name: str | None, errors: list[dict[str, Any]]) -> GraphQLError:
        messages = [str(err.get("message", "")) for err in errors]
        extensions = cast(dict[str, Any], errors[0].get("extensions") or {})
        code = extensions.get("code")
        log_with_context(
            logger,
            "debug",
            "GraphQL errors in response",
            operation=name,
            code=code,
            messages=messages,
        )
        return GraphQLError(
            messages[0] or "Unknown GraphQL error",
            operation=name,
            code=code if isinstance(code, int) else None,
            messages=messages,
        )
