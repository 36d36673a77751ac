"""Built-in API actions (apiCall, executeAction)."""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import urljoin

import aiohttp
import structlog

from ...config import EngineSettings
from ..base import ActionResult, ExecutionContext
from ..cancellation import CancellationToken


logger = structlog.get_logger(__name__)

ACTION_GATEWAY_PATH = "/ui/actions/execute"


class ApiActions:
    """HTTP-backed action handlers.

    Requests use the context's ``http_session`` when present; otherwise a
    short-lived ``aiohttp.ClientSession`` is opened per call.
    """

    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        """Initialize the API actions.

        Args:
            settings: Engine settings (base URL and default timeout)
        """
        self.settings = settings or EngineSettings()

    @asynccontextmanager
    async def _session(self, context: ExecutionContext) -> AsyncIterator[Any]:
        if context.http_session is not None:
            yield context.http_session
            return
        timeout = aiohttp.ClientTimeout(total=self.settings.api_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            yield session

    def _full_url(self, url: str) -> str:
        if self.settings.api_base_url and not url.startswith(("http://", "https://")):
            return urljoin(f"{self.settings.api_base_url.rstrip('/')}/", url.lstrip("/"))
        return url

    async def api_call(
        self, params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
    ) -> ActionResult:
        """Execute an HTTP call and expect a JSON response."""
        url = params.get("url")
        try:
            if not url:
                raise ValueError('API call action requires "url" parameter')

            method = str(params.get("method") or "GET").upper()
            headers = {"Content-Type": "application/json", **(params.get("headers") or {})}
            query = {
                key: _query_value(value)
                for key, value in (params.get("queryParams") or {}).items()
            }
            body = params.get("body")
            timeout_ms = params.get("timeout")

            full_url = self._full_url(url)

            request_kwargs: Dict[str, Any] = {
                "method": method,
                "url": full_url,
                "headers": headers,
            }
            if query:
                request_kwargs["params"] = query
            if body is not None and method != "GET":
                request_kwargs["json"] = body
            if timeout_ms:
                request_kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)

            logger.info("Sending API request", url=full_url, method=method)

            async with self._session(context) as session:
                async with session.request(**request_kwargs) as response:
                    payload = await _read_json(response, full_url)

                    if response.status < 200 or response.status >= 300:
                        logger.warning(
                            "API request returned error status",
                            url=full_url,
                            status=response.status
                        )
                        return _error_result(payload, response.status, "API_ERROR", "API request failed")

                    return ActionResult.ok({
                        "status": response.status,
                        "data": payload,
                        "headers": dict(response.headers),
                    })

        except aiohttp.ClientError as e:
            logger.error("HTTP error during API call", url=url, error=str(e))
            return ActionResult.fail(f"HTTP error: {e}", code="API_CALL_ERROR")

        except Exception as e:
            return ActionResult.fail(e, code="API_CALL_ERROR")

    async def execute_action(
        self, params: Dict[str, Any], context: ExecutionContext, signal: CancellationToken
    ) -> ActionResult:
        """Execute a backend-defined action through the action gateway."""
        try:
            action_id = params.get("actionId")
            if not action_id:
                raise ValueError('Execute action requires "actionId" parameter')

            url = self._full_url(ACTION_GATEWAY_PATH)

            async with self._session(context) as session:
                async with session.request(
                    method="POST",
                    url=url,
                    json={"actionId": action_id, "context": params.get("context")},
                    headers={"Content-Type": "application/json"},
                ) as response:
                    payload = await _read_json(response, url)

                    if response.status < 200 or response.status >= 300:
                        return _error_result(
                            payload, response.status, "EXECUTE_ACTION_ERROR", "Action execution failed"
                        )

                    return ActionResult.ok(payload)

        except Exception as e:
            return ActionResult.fail(e, code="EXECUTE_ACTION_ERROR")


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


async def _read_json(response: Any, url: str) -> Any:
    content_type = (response.content_type or "").lower()
    if "application/json" not in content_type:
        raw = await response.text()
        message = (
            f'Expected JSON response from "{url}" but received content type '
            f'"{content_type}" with status {response.status}.'
        )
        if raw:
            message += f" Body (truncated): {raw[:200]}"
        raise ValueError(message)

    try:
        return await response.json()
    except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
        raise ValueError(f'Failed to parse JSON response from "{url}": {e}') from e


def _error_result(payload: Any, status: int, default_code: str, default_message: str) -> ActionResult:
    body = payload if isinstance(payload, dict) else {}
    return ActionResult.fail({
        "message": body.get("message") or default_message,
        "code": body.get("code") or default_code,
        "status": status,
        "fieldErrors": body.get("fieldErrors"),
        "cause": payload,
    })
