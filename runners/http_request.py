"""HTTP request node (``kind="api"``)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from execution.context import ExecutionContext
from runners.base import NodeExecutionResult, NodeRunner
from shared.variable_resolver import format_value
from shared.workflow_contracts import HttpRequestNode

logger = logging.getLogger(__name__)

_BODY_METHODS = {"POST", "PUT", "PATCH"}


class HttpRequestRunner(NodeRunner):
    kind = "api"
    external = True

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self._transport = transport

    async def run(self, node: HttpRequestNode, context: ExecutionContext) -> NodeExecutionResult:
        config = node.config
        url = context.resolve_text(config.url)
        headers = {key: format_value(context.resolve_value(value)) for key, value in config.headers.items()}

        credential = context.credential(config.integration_id)
        if credential is not None:
            if credential.access_token:
                headers["Authorization"] = f"Bearer {credential.access_token}"
            if credential.api_key:
                headers["X-API-Key"] = credential.api_key

        request_kwargs: dict[str, Any] = {"headers": headers}
        if config.body is not None and config.method in _BODY_METHODS:
            body = context.resolve_structure(config.body)
            if isinstance(body, str):
                request_kwargs["content"] = body
            else:
                request_kwargs["json"] = body

        async with httpx.AsyncClient(timeout=self._timeout_for(node), transport=self._transport) as client:
            response = await client.request(config.method, url, **request_kwargs)

        output = {
            "status": response.status_code,
            "status_text": response.reason_phrase,
            "headers": dict(response.headers),
            "data": self._response_data(response),
        }
        context.log(node.id, "info", f"{config.method} {url} -> {response.status_code}")

        if response.is_success:
            return NodeExecutionResult.ok(output)
        return NodeExecutionResult(
            success=False,
            output=output,
            error=f"HTTP {response.status_code} {response.reason_phrase}".strip(),
            should_continue=False,
        )

    def _response_data(self, response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                logger.warning("Response declared JSON but could not be parsed")
        return response.text
