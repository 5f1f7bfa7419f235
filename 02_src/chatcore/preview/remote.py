"""Client for the server-side document-preview endpoint."""

from typing import Any, Awaitable, Callable

import httpx

from ..config import ChatSettings
from ..errors import (
    NotAuthenticated,
    PreviewUnavailable,
    RetryExhausted,
    Unauthorized,
)
from ..logging_config import get_logger
from ..models import MessagePreviewRef, PreviewResult
from ..repository import backend_errors
from ..retry import RetryPolicy

logger = get_logger(__name__)

PREVIEW_PATH = "/functions/v1/document-preview"

TokenProvider = Callable[[], Awaitable[str | None]]


def coerce_response(data: Any) -> PreviewResult:
    """Normalize current and legacy endpoint responses."""
    if not isinstance(data, dict):
        raise PreviewUnavailable("Preview response is not an object")
    if not data.get("ok"):
        raise PreviewUnavailable(str(data.get("error") or "Preview failed"))

    mode = data.get("mode")
    url = data.get("url") if isinstance(data.get("url"), str) else None

    # Older deployments answered {ok, html, title} without a mode
    if isinstance(data.get("html"), str) and mode in (None, "html"):
        return PreviewResult(
            mode="html",
            title=str(data.get("title") or "Preview"),
            html=data["html"],
            url=url,
        )

    if mode == "url" and url:
        embed = data.get("office_embed_url") or data.get("officeEmbedUrl")
        return PreviewResult(
            mode="url",
            title=str(data.get("title") or "Attachment"),
            url=url,
            office_embed_url=embed if isinstance(embed, str) else None,
        )

    raise PreviewUnavailable(str(data.get("error") or "Preview response missing html/url"))


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or "Unknown error"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.text or "Unknown error"


def _terminal_error(response: httpx.Response) -> Exception:
    message = f"document-preview failed ({response.status_code}): {_error_text(response)}"
    if response.status_code == 401:
        return NotAuthenticated(message)
    if response.status_code == 403:
        return Unauthorized(message)
    return PreviewUnavailable(message)


class RemoteDocumentPreviewClient:
    """POSTs preview requests with a bearer credential, retrying gateway failures."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        *,
        policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        settings: ChatSettings | None = None,
    ):
        self._endpoint = base_url.rstrip("/") + PREVIEW_PATH
        self._token_provider = token_provider
        self._policy = policy or RetryPolicy()
        self._settings = settings or ChatSettings()
        self._client = client
        self._owns_client = client is None

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def fetch(
        self,
        ref: MessagePreviewRef,
        max_rows: int | None = None,
        max_cols: int | None = None,
    ) -> PreviewResult:
        """Request a rendered preview for the attachment of a message."""
        with backend_errors():
            token = await self._token_provider()
        if not token:
            raise NotAuthenticated("You must be signed in.")

        payload = {
            "kind": ref.kind,
            "id": ref.id,
            "max_rows": max_rows or self._settings.preview_max_rows,
            "max_cols": max_cols or self._settings.preview_max_cols,
        }
        headers = {"Authorization": f"Bearer {token}"}
        client = self._get_client()

        last_status: int | None = None
        last_error = "document-preview failed"
        attempt = 0
        while attempt < self._policy.max_attempts:
            attempt += 1
            try:
                response = await client.post(self._endpoint, json=payload, headers=headers)
            except httpx.HTTPError as e:
                last_status = None
                last_error = f"document-preview request failed: {e}"
            else:
                if response.is_success:
                    try:
                        data = response.json()
                    except ValueError as e:
                        raise PreviewUnavailable("Preview response is not JSON") from e
                    return coerce_response(data)
                if not self._policy.is_retryable_status(response.status_code):
                    raise _terminal_error(response)
                last_status = response.status_code
                last_error = f"document-preview failed ({last_status}): {_error_text(response)}"

            logger.warning(
                "Preview attempt %d/%d failed: %s",
                attempt,
                self._policy.max_attempts,
                last_error,
            )
            if self._policy.has_attempts_left(attempt):
                await self._policy.wait(attempt)

        raise RetryExhausted(last_error, attempts=attempt, last_status=last_status)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.preview_timeout)
            self._owns_client = True
        return self._client
