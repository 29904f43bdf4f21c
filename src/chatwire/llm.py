"""Concrete implementations for streaming LLM clients."""

import asyncio
import logging
import os
import uuid
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .accumulator import ContentAccumulator
from .config import API_URL
from .errors import (
    NOT_CONFIGURED,
    REQUEST_IN_PROGRESS,
    TransportError,
    describe_failure,
    parse_retry_after,
)
from .listeners import Listener
from .models import ASSISTANT_ROLE, USER_ROLE, PendingRequest
from .sse import FrameParser
from .transport import HTTPX, Transport

logger = logging.getLogger(__name__)

USER_AGENT = "chatwire-python"
CACHE_CONTROL = {"type": "ephemeral"}


class LLM(ABC):
    """Abstract Base Class for all streaming LLM clients."""

    listener: Listener

    @abstractmethod
    async def send_message(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        system_prompt: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> Optional[Dict[str, Any]]:
        """Runs one logical send and streams its notifications to the listener.

        Parameters
        ----------
        model : str
            The model to generate with.
        messages : List[Dict[str, Any]]
            The conversation in wire format.
        tools : List[Dict[str, Any]], optional
            Tool definitions the model may call.
        system_prompt : str, optional
            The system prompt.
        max_tokens : int, default=4096
            Upper bound on generated tokens.

        Returns
        -------
        Optional[Dict[str, Any]]
            The completed message, or ``None`` if the send was rejected,
            failed, or was cancelled. Failures are reported through
            ``listener.on_error`` rather than raised.
        """
        pass

    @abstractmethod
    def cancel_request(self) -> None:
        """Aborts the send in flight, if any, without reporting an error."""
        pass

    def is_configured(self) -> bool:
        return True

    def is_request_in_progress(self) -> bool:
        return False


class Anthropic(LLM):
    """Streams from the Anthropic Messages API with automatic rate-limit retry.

    At most one logical send is in flight per instance. A send that is
    answered with HTTP 429 is resent after the server's ``retry-after`` delay
    (or ``DEFAULT_RETRY_DELAY`` seconds) up to ``MAX_RETRIES`` times.
    """

    API_VERSION = "2023-06-01"
    BETA_FEATURES = "prompt-caching-2024-07-31"
    MAX_RETRIES = 3
    DEFAULT_RETRY_DELAY = 30

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[Transport] = None,
        listener: Optional[Listener] = None,
        api_url: str = API_URL,
        user_agent: str = USER_AGENT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api_key = (
            api_key if api_key is not None else os.environ.get("ANTHROPIC_API_KEY", "")
        )
        self.transport = transport or HTTPX()
        self.listener = listener or Listener()
        self.api_url = api_url
        self.user_agent = user_agent
        self.retry_count = 0
        self.pending: Optional[PendingRequest] = None
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._accumulator: Optional[ContentAccumulator] = None
        self._aborted: Set[asyncio.Task] = set()

    def set_api_key(self, api_key: str) -> None:
        self.api_key = api_key

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def is_request_in_progress(self) -> bool:
        return self._task is not None and not self._task.done()

    async def send_message(
        self, model, messages, tools=None, system_prompt=None, max_tokens=4096
    ):
        if not self.is_configured():
            self.listener.on_error(NOT_CONFIGURED)
            return None
        if self.is_request_in_progress():
            self.listener.on_error(REQUEST_IN_PROGRESS)
            return None

        self.pending = PendingRequest(
            model=model,
            messages=messages,
            tools=tools or [],
            system_prompt=system_prompt,
            max_tokens=max_tokens,
        )
        task = self._task = asyncio.ensure_future(self._run())
        try:
            return await task
        except asyncio.CancelledError:
            if task in self._aborted:
                self._aborted.discard(task)
                return None
            raise
        finally:
            if self._task is task:
                self._task = None

    def cancel_request(self) -> None:
        self.retry_count = 0
        self.pending = None
        self._accumulator = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            logger.info("Cancelling request in flight")
            self._aborted.add(task)
            task.cancel()

    async def _run(self) -> Optional[Dict[str, Any]]:
        while True:
            accumulator = self._accumulator = ContentAccumulator(self.listener)
            try:
                message = await self._stream(accumulator)
            except TransportError as e:
                if e.is_rate_limited and self.retry_count < self.MAX_RETRIES:
                    delay = parse_retry_after(e.headers, self.DEFAULT_RETRY_DELAY)
                    self.retry_count += 1
                    logger.info(
                        "Rate limited; retry %d/%d in %ds",
                        self.retry_count,
                        self.MAX_RETRIES,
                        delay,
                    )
                    self.listener.on_rate_limit_waiting(delay)
                    await self._sleep(delay)
                    continue
                self._finish_send()
                error_message = describe_failure(e)
                logger.warning("Request failed: %s", error_message)
                self.listener.on_error(error_message)
                return None
            self._finish_send()
            return message

    async def _stream(self, accumulator: ContentAccumulator) -> Dict[str, Any]:
        parser = FrameParser()
        body = self.build_request_body(self.pending)
        logger.debug(
            "Sending %d messages to %s", len(self.pending.messages), self.pending.model
        )
        self.listener.on_stream_started()
        async with aclosing(
            self.transport.stream(self.api_url, self.build_headers(), body)
        ) as chunks:
            async for chunk in chunks:
                for frame in parser.feed(chunk):
                    self._check_current(accumulator)
                    accumulator.handle(frame)
        for frame in parser.flush():
            self._check_current(accumulator)
            accumulator.handle(frame)
        self._check_current(accumulator)
        return accumulator.finish()

    def _check_current(self, accumulator: ContentAccumulator) -> None:
        # cancel_request() drops the accumulator; stop before emitting more.
        if self._accumulator is not accumulator:
            raise asyncio.CancelledError()

    def _finish_send(self) -> None:
        self.retry_count = 0
        self.pending = None
        self._accumulator = None

    def build_headers(self) -> Dict[str, str]:
        return {
            "content-type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.API_VERSION,
            "anthropic-beta": self.BETA_FEATURES,
            "user-agent": self.user_agent,
        }

    @staticmethod
    def build_request_body(request: PendingRequest) -> Dict[str, Any]:
        """Builds the JSON body, marking the system prompt and tools cacheable."""
        body: Dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "stream": True,
            "messages": request.messages,
        }
        if request.system_prompt:
            body["system"] = [
                {
                    "type": "text",
                    "text": request.system_prompt,
                    "cache_control": dict(CACHE_CONTROL),
                }
            ]
        if request.tools:
            tools = [dict(tool) for tool in request.tools]
            tools[-1]["cache_control"] = dict(CACHE_CONTROL)
            body["tools"] = tools
        return body


class Echo(LLM):
    """Offline client that streams the last user message back as the reply."""

    def __init__(self, listener: Optional[Listener] = None, default_model: str = "echo-v1"):
        self.listener = listener or Listener()
        self.model = default_model
        self.requests: List[PendingRequest] = []

    async def send_message(
        self, model, messages, tools=None, system_prompt=None, max_tokens=4096
    ):
        self.requests.append(
            PendingRequest(
                model=model or self.model,
                messages=messages,
                tools=tools or [],
                system_prompt=system_prompt,
                max_tokens=max_tokens,
            )
        )
        prompt = "No message provided"
        for message in reversed(messages):
            if message["role"] == USER_ROLE and isinstance(message["content"], str):
                prompt = message["content"]
                break
        content = f"Echo: {prompt}"

        self.listener.on_stream_started()
        await asyncio.sleep(0)
        self.listener.on_content_delta(content)
        message = {
            "id": f"msg_{uuid.uuid4().hex}",
            "type": "message",
            "role": ASSISTANT_ROLE,
            "model": model or self.model,
            "content": [{"type": "text", "text": content}],
            "stop_reason": "end_turn",
            "stop_sequence": None,
        }
        self.listener.on_message_complete(message)
        return message

    def cancel_request(self):
        pass
