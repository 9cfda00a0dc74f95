"""Remote model endpoint: request building, streaming and credentials."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator

import httpx

from liteagent.cancellation import CancellationToken
from liteagent.config import AppConfig
from liteagent.errors import RemoteError
from liteagent.loop_detection import LoopDetector
from liteagent.retry import CallDescriptor, RetryGate, RetryPolicy, WaitCallback
from liteagent.stream import StreamFragment, decode_stream

logger = logging.getLogger(__name__)

API_KEY_ENV_VARS = ("LITEAGENT_API_KEY", "GEMINI_API_KEY")
API_KEY_HEADER = "x-goog-api-key"


@dataclass
class ModelRequest:
    """One request to the model: full history plus current tool declarations."""

    model: str
    contents: list[dict]
    tools: list[dict] = field(default_factory=list)
    system_instruction: str | None = None

    def to_body(self) -> dict:
        body: dict = {"contents": self.contents}
        if self.tools:
            body["tools"] = [{"functionDeclarations": self.tools}]
        if self.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}
        return body


class CredentialProvider(ABC):
    """Supplies the credential for the model endpoint.

    Tokens are sent as ``Authorization: Bearer``. Providers holding a
    different kind of credential override ``auth_headers``.
    """

    @abstractmethod
    async def get_token(self) -> str | None:
        ...

    async def auth_headers(self) -> dict[str, str]:
        token = await self.get_token()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}


class EnvCredentials(CredentialProvider):
    """Reads a Gemini API key from the environment.

    API keys go in ``x-goog-api-key``; the endpoint only accepts OAuth
    access tokens as bearer credentials.
    """

    def __init__(self, env_vars: tuple[str, ...] = API_KEY_ENV_VARS):
        self.env_vars = env_vars

    async def get_token(self) -> str | None:
        for var in self.env_vars:
            value = os.environ.get(var)
            if value:
                return value
        return None

    async def auth_headers(self) -> dict[str, str]:
        api_key = await self.get_token()
        if not api_key:
            return {}
        return {API_KEY_HEADER: api_key}


class RemoteCaller(ABC):
    """Anything that can turn a ModelRequest into a stream of fragments."""

    @abstractmethod
    def stream(
        self,
        request: ModelRequest,
        token: CancellationToken | None = None,
        loop_detector: LoopDetector | None = None,
    ) -> AsyncIterator[StreamFragment]:
        ...

    async def aclose(self) -> None:
        """Release network resources."""

    def set_retry_listener(self, listener: WaitCallback | None) -> None:
        """Register a callback for rate-limit backoff waits."""


def _error_message(body: bytes) -> str:
    """Best-effort extraction of an API error message from a response body."""
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text.strip()[:500] or "no response body"
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str):
            return error
    return text.strip()[:500]


class GeminiClient(RemoteCaller):
    """Streams generateContent responses over server-sent events."""

    def __init__(
        self,
        config: AppConfig,
        credentials: CredentialProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        on_retry: WaitCallback | None = None,
    ):
        self.config = config
        self.credentials = credentials or EnvCredentials()
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=config.request_timeout)
        self.gate = RetryGate(
            self.http,
            RetryPolicy(max_retries=config.max_retries, base_delay=config.retry_base_delay),
            on_wait=on_retry,
        )

    def url_for(self, model: str) -> str:
        return f"{self.config.endpoint.rstrip('/')}/models/{model}:streamGenerateContent?alt=sse"

    def set_retry_listener(self, listener: WaitCallback | None) -> None:
        self.gate.on_wait = listener

    async def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        auth = await self.credentials.auth_headers()
        if auth:
            headers.update(auth)
        else:
            logger.warning("No API key found; sending unauthenticated request")
        return headers

    async def stream(
        self,
        request: ModelRequest,
        token: CancellationToken | None = None,
        loop_detector: LoopDetector | None = None,
    ) -> AsyncIterator[StreamFragment]:
        """POST the request and yield decoded fragments.

        Raises RemoteError on a non-success status (after rate-limit
        retries) and lets httpx transport errors propagate.
        """
        call = CallDescriptor(
            method="POST",
            url=self.url_for(request.model),
            headers=await self._headers(),
            body=request.to_body(),
        )
        if token is not None:
            response = await token.race(self.gate.send(call, stream=True, sleep=token.sleep))
        else:
            response = await self.gate.send(call, stream=True)

        try:
            if response.status_code != 200:
                body = await response.aread()
                message = _error_message(body)
                logger.error("Model endpoint returned %d: %s", response.status_code, message)
                raise RemoteError(response.status_code, message)

            fragments = decode_stream(response.aiter_bytes(), token, loop_detector)
            async with aclosing(fragments):
                async for fragment in fragments:
                    yield fragment
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()
