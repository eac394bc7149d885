"""Outbound notifications to the remote control plane.

The change-set manager reports lifecycle transitions as named mutations
(``changesets.start``, ``changesets.complete``, ...). Delivery is
best-effort: the manager logs and drops any NotifierError.

Notifiers:
- NullNotifier            — default; discards every mutation
- HttpMutationNotifier    — POSTs mutations to {base_url}/api/mutation via httpx
"""

from typing import Any

import httpx

from changeset_engine.errors import NotifierError
from changeset_engine.observability import get_logger

logger = get_logger(__name__)


class NullNotifier:
    """Notifier used when no control plane is configured."""

    async def call_mutation(self, name: str, args: dict[str, Any]) -> None:
        logger.debug("Mutation dropped (no control plane)", mutation=name)
        return None


class HttpMutationNotifier:
    """Sends mutations to the control plane HTTP endpoint.

    Args:
        base_url: Control plane base URL.
        token: Optional bearer token.
        timeout_s: Per-request timeout in seconds.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize HttpMutationNotifier.

        Args:
            base_url: Control plane base URL (e.g., https://control.example.com).
            token: Bearer token; omitted from requests when empty.
            timeout_s: Request timeout in seconds.
            transport: Optional httpx transport override.
        """
        self._url = f"{base_url.rstrip('/')}/api/mutation"
        self._token = token
        self._timeout_s = timeout_s
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def call_mutation(self, name: str, args: dict[str, Any]) -> Any:
        """POST a mutation and return the decoded ``value`` of the response.

        Args:
            name: Mutation name, e.g. "changesets.complete".
            args: JSON-serializable mutation arguments.

        Returns:
            The ``value`` field of the response body, or the whole body when
            it has none.

        Raises:
            NotifierError: If the request fails, times out or is rejected.
        """
        payload = {"path": name, "args": args, "format": "json"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(self._url, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise NotifierError(f"Mutation {name} timed out after {self._timeout_s}s") from exc
        except httpx.RequestError as exc:
            raise NotifierError(f"Mutation {name} request error: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "Control plane rejected mutation",
                mutation=name,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise NotifierError(
                f"Mutation {name} failed with status {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict) and "value" in body:
            return body["value"]
        return body


def build_notifier(base_url: str, token: str = "", timeout_s: float = 10.0) -> NullNotifier | HttpMutationNotifier:
    """Return an HTTP notifier when a URL is configured, otherwise a NullNotifier."""
    if not base_url:
        return NullNotifier()
    return HttpMutationNotifier(base_url, token=token, timeout_s=timeout_s)
